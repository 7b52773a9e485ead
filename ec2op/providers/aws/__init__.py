"""AWS EC2 provider for ec2op.

Example:
    from ec2op.providers.aws import AWS, AWSModule, EC2Provider

    injector = Injector([AWSModule(AWS(region="us-east-1"))])
    provider = injector.get(EC2Provider)
"""

from ec2op.providers.aws.clients import AWSModule, EC2ClientFactory, ec2_factory
from ec2op.providers.aws.config import AWS
from ec2op.providers.aws.provider import LIVE_STATES, OWNER_TAG, EC2Provider

__all__ = [
    "AWS",
    "AWSModule",
    "EC2ClientFactory",
    "EC2Provider",
    "LIVE_STATES",
    "OWNER_TAG",
    "ec2_factory",
]
