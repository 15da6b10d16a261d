import os

from botocore.config import Config

# DynamoDB has cross region resources for optimisation for calls from various regions.
aws_config_ddb = Config(retries={'max_attempts': 30}, region_name=os.environ.get('AWS_REGION', 'eu-central-1'))
