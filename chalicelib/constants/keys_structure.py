# Table name env variable -> hash key of the table
users_table = ('USERS_TABLE_NAME', 'id')
courier_profiles_table = ('COURIER_PROFILES_TABLE_NAME', 'user_id')
business_profiles_table = ('BUSINESS_PROFILES_TABLE_NAME', 'user_id')
deliveries_table = ('DELIVERIES_TABLE_NAME', 'id')
customers_table = ('CUSTOMERS_TABLE_NAME', 'id')
phone_claims_table = ('PHONE_CLAIMS_TABLE_NAME', 'phone_key')
