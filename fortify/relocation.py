"""
FortifAI relocation: moves an EC2 instance into another VPC.

An instance cannot change VPC in place, so the workflow stops it, snapshots
it to an AMI, launches a replacement from that AMI in a subnet of the
destination VPC (same availability zone), then moves the elastic IP over.
Steps run sequentially with fixed-interval polling and there is no rollback:
an AMI created before a later failure is left behind.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from posture import config

logger = logging.getLogger('EC2Relocator')


class RelocationError(Exception):
    pass


class RelocationInProgress(RelocationError):
    pass


@dataclass
class RelocationResult:
    success: bool
    message: str
    new_instance_id: str
    image_id: str
    original_instance_id: str

    def to_dict(self) -> Dict:
        return {
            'success': self.success,
            'message': self.message,
            'newInstanceId': self.new_instance_id,
            'imageId': self.image_id,
            'originalInstanceId': self.original_instance_id,
        }


class RelocationGuard:
    """Tracks instances with a relocation under way."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active = set()

    @contextmanager
    def hold(self, instance_id: str):
        with self._lock:
            if instance_id in self._active:
                raise RelocationInProgress(f"Relocation already in progress for instance {instance_id}")
            self._active.add(instance_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(instance_id)

    def is_active(self, instance_id: str) -> bool:
        with self._lock:
            return instance_id in self._active


_guard = RelocationGuard()


class EC2Relocator:
    def __init__(self, ec2_client=None, session: boto3.Session = None,
                 poll_seconds: float = None, max_polls: int = None,
                 guard: RelocationGuard = None,
                 sleep: Callable[[float], None] = time.sleep):
        if ec2_client is not None:
            self.ec2_client = ec2_client
        else:
            session = session or boto3.Session(region_name=config.AWS_REGION)
            self.ec2_client = session.client('ec2')
        self.poll_seconds = config.RELOCATION_POLL_SECONDS if poll_seconds is None else poll_seconds
        self.max_polls = config.RELOCATION_MAX_POLLS if max_polls is None else max_polls
        self.guard = guard or _guard
        self.sleep = sleep

    def _describe_instance(self, instance_id: str) -> Optional[Dict]:
        response = self.ec2_client.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                return instance
        return None

    def _poll(self, check: Callable[[], bool], description: str) -> None:
        polls = 0
        while not check():
            polls += 1
            if self.max_polls and polls >= self.max_polls:
                raise RelocationError(f"Timed out waiting for {description}")
            self.sleep(self.poll_seconds)

    def wait_for_instance_state(self, instance_id: str, target_state: str) -> None:
        def reached():
            instance = self._describe_instance(instance_id)
            return bool(instance) and instance.get('State', {}).get('Name') == target_state
        self._poll(reached, f"instance {instance_id} to be {target_state}")

    def wait_for_image_available(self, image_id: str) -> None:
        def available():
            images = self.ec2_client.describe_images(ImageIds=[image_id]).get('Images', [])
            return bool(images) and images[0].get('State') == 'available'
        self._poll(available, f"image {image_id} to be available")

    def find_destination_subnet(self, vpc_id: str, availability_zone: str) -> str:
        response = self.ec2_client.describe_subnets(Filters=[
            {'Name': 'vpc-id', 'Values': [vpc_id]},
            {'Name': 'availability-zone', 'Values': [availability_zone]},
        ])
        subnets = response.get('Subnets', [])
        if not subnets:
            raise RelocationError(f"No subnets found in VPC {vpc_id} for availability zone {availability_zone}")
        return subnets[0]['SubnetId']

    def _run_params(self, instance: Dict, image_id: str, subnet_id: str) -> Dict:
        params = {
            'ImageId': image_id,
            'InstanceType': instance['InstanceType'],
            'SubnetId': subnet_id,
            'MinCount': 1,
            'MaxCount': 1,
        }
        tags: List[Dict] = instance.get('Tags') or []
        if tags:
            params['TagSpecifications'] = [{'ResourceType': 'instance', 'Tags': tags}]

        profile_arn = (instance.get('IamInstanceProfile') or {}).get('Arn')
        logger.info(f"Original instance IAM profile: {profile_arn or 'None'}")
        if profile_arn:
            params['IamInstanceProfile'] = {'Name': profile_arn.split('/')[-1]}

        key_name = instance.get('KeyName')
        logger.info(f"Original instance key pair: {key_name or 'None'}")
        if key_name:
            params['KeyName'] = key_name
        return params

    def handle_elastic_ip(self, instance_id: str, new_instance_id: str) -> Optional[str]:
        """Move the original instance's elastic IP to the replacement. Never raises."""
        try:
            addresses = self.ec2_client.describe_addresses().get('Addresses', [])
            elastic_ip = next((a for a in addresses if a.get('InstanceId') == instance_id), None)
            if not elastic_ip:
                return None

            logger.info(f"Found elastic IP {elastic_ip.get('PublicIp')} associated with instance {instance_id}")
            self.ec2_client.disassociate_address(AssociationId=elastic_ip['AssociationId'])
            self.sleep(self.poll_seconds)

            logger.info(f"Associating elastic IP with new instance {new_instance_id}")
            self.ec2_client.associate_address(AllocationId=elastic_ip['AllocationId'], InstanceId=new_instance_id)
            return elastic_ip.get('PublicIp')
        except (ClientError, BotoCoreError, KeyError) as e:
            logger.error(f"Error handling elastic IP: {str(e)}")
            return None

    def relocate(self, instance_id: str, destination_vpc_id: str) -> RelocationResult:
        with self.guard.hold(instance_id):
            return self._relocate(instance_id, destination_vpc_id)

    def _relocate(self, instance_id: str, destination_vpc_id: str) -> RelocationResult:
        logger.info(f"Starting relocation of instance {instance_id} to VPC {destination_vpc_id}")

        instance = self._describe_instance(instance_id)
        if not instance:
            raise RelocationError(f"Instance {instance_id} not found")
        if instance.get('VpcId') == destination_vpc_id:
            raise RelocationError("Instance is already in the target VPC")

        logger.info(f"Stopping instance {instance_id}")
        self.ec2_client.stop_instances(InstanceIds=[instance_id])
        self.wait_for_instance_state(instance_id, 'stopped')

        logger.info("Creating AMI from instance...")
        image = self.ec2_client.create_image(
            InstanceId=instance_id,
            Name=f"relocation-ami-{instance_id}-{int(time.time() * 1000)}",
            Description=f"AMI created for instance {instance_id} relocation",
            NoReboot=True,
        )
        image_id = image['ImageId']
        self.wait_for_image_available(image_id)

        availability_zone = instance['Placement']['AvailabilityZone']
        subnet_id = self.find_destination_subnet(destination_vpc_id, availability_zone)

        logger.info("Launching new instance in destination VPC...")
        launched = self.ec2_client.run_instances(**self._run_params(instance, image_id, subnet_id))
        new_instance_id = launched['Instances'][0]['InstanceId']
        self.wait_for_instance_state(new_instance_id, 'running')

        self.handle_elastic_ip(instance_id, new_instance_id)

        return RelocationResult(
            success=True,
            message=f"Successfully relocated instance {instance_id} to VPC {destination_vpc_id}",
            new_instance_id=new_instance_id,
            image_id=image_id,
            original_instance_id=instance_id,
        )


def relocate_ec2_between_vpcs(instance_id: str, destination_vpc_id: str, session: boto3.Session = None) -> Dict:
    return EC2Relocator(session=session).relocate(instance_id, destination_vpc_id).to_dict()


if __name__ == "__main__":
    import json
    import sys

    # python -m fortify.relocation <instance-id> [destination-vpc-id]
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    target_vpc = sys.argv[2] if len(sys.argv) > 2 else config.SANDBOX_VPC_ID
    print(json.dumps(relocate_ec2_between_vpcs(sys.argv[1], target_vpc), indent=2))
