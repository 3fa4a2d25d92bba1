"""
Tests for the FortifAI relocation workflow against a mocked EC2 client.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from fortify.relocation import EC2Relocator, RelocationError, RelocationGuard, RelocationInProgress


def _instance(instance_id='i-old', state='running', vpc='vpc-src', **extra):
    data = {
        'InstanceId': instance_id,
        'InstanceType': 't3.micro',
        'VpcId': vpc,
        'State': {'Code': 16, 'Name': state},
        'Placement': {'AvailabilityZone': 'us-east-1a'},
    }
    data.update(extra)
    return {'Reservations': [{'Instances': [data]}]}


def _happy_ec2(**extra):
    ec2 = MagicMock()
    ec2.describe_instances.side_effect = [
        _instance(**extra),
        _instance(state='stopping'),
        _instance(state='stopped'),
        _instance('i-new', state='pending', vpc='vpc-dst'),
        _instance('i-new', state='running', vpc='vpc-dst'),
    ]
    ec2.create_image.return_value = {'ImageId': 'ami-1'}
    ec2.describe_images.side_effect = [
        {'Images': [{'ImageId': 'ami-1', 'State': 'pending'}]},
        {'Images': [{'ImageId': 'ami-1', 'State': 'available'}]},
    ]
    ec2.describe_subnets.return_value = {'Subnets': [{'SubnetId': 'subnet-dst'}]}
    ec2.run_instances.return_value = {'Instances': [{'InstanceId': 'i-new'}]}
    ec2.describe_addresses.return_value = {'Addresses': [{
        'PublicIp': '203.0.113.7',
        'AllocationId': 'eipalloc-1',
        'AssociationId': 'eipassoc-1',
        'InstanceId': 'i-old',
    }]}
    return ec2


def _relocator(ec2, sleeps=None, **kwargs):
    sleeps = sleeps if sleeps is not None else []
    return EC2Relocator(ec2_client=ec2, poll_seconds=5, guard=RelocationGuard(),
                        sleep=sleeps.append, **kwargs)


def test_relocation_happy_path():
    ec2 = _happy_ec2(
        Tags=[{'Key': 'Name', 'Value': 'web'}],
        IamInstanceProfile={'Arn': 'arn:aws:iam::123456789012:instance-profile/web-profile'},
        KeyName='ops',
    )
    sleeps = []

    result = _relocator(ec2, sleeps, max_polls=0).relocate('i-old', 'vpc-dst')

    assert result.to_dict() == {
        'success': True,
        'message': 'Successfully relocated instance i-old to VPC vpc-dst',
        'newInstanceId': 'i-new',
        'imageId': 'ami-1',
        'originalInstanceId': 'i-old',
    }
    ec2.stop_instances.assert_called_once_with(InstanceIds=['i-old'])

    image_kwargs = ec2.create_image.call_args.kwargs
    assert image_kwargs['InstanceId'] == 'i-old'
    assert image_kwargs['NoReboot'] is True
    assert image_kwargs['Name'].startswith('relocation-ami-i-old-')

    ec2.describe_subnets.assert_called_once_with(Filters=[
        {'Name': 'vpc-id', 'Values': ['vpc-dst']},
        {'Name': 'availability-zone', 'Values': ['us-east-1a']},
    ])
    ec2.run_instances.assert_called_once_with(
        ImageId='ami-1',
        InstanceType='t3.micro',
        SubnetId='subnet-dst',
        MinCount=1,
        MaxCount=1,
        TagSpecifications=[{'ResourceType': 'instance', 'Tags': [{'Key': 'Name', 'Value': 'web'}]}],
        IamInstanceProfile={'Name': 'web-profile'},
        KeyName='ops',
    )
    ec2.disassociate_address.assert_called_once_with(AssociationId='eipassoc-1')
    ec2.associate_address.assert_called_once_with(AllocationId='eipalloc-1', InstanceId='i-new')
    # stop, image and launch each poll once, then the elastic IP settles
    assert sleeps == [5, 5, 5, 5]


def test_minimal_run_params():
    ec2 = _happy_ec2()

    _relocator(ec2).relocate('i-old', 'vpc-dst')

    ec2.run_instances.assert_called_once_with(
        ImageId='ami-1', InstanceType='t3.micro', SubnetId='subnet-dst', MinCount=1, MaxCount=1,
    )


def test_unknown_instance():
    ec2 = MagicMock()
    ec2.describe_instances.return_value = {'Reservations': []}

    with pytest.raises(RelocationError, match='Instance i-missing not found'):
        _relocator(ec2).relocate('i-missing', 'vpc-dst')
    ec2.stop_instances.assert_not_called()


def test_already_in_target_vpc():
    ec2 = MagicMock()
    ec2.describe_instances.return_value = _instance(vpc='vpc-dst')

    with pytest.raises(RelocationError, match='already in the target VPC'):
        _relocator(ec2).relocate('i-old', 'vpc-dst')
    ec2.stop_instances.assert_not_called()


def test_no_subnet_in_availability_zone():
    ec2 = _happy_ec2()
    ec2.describe_subnets.return_value = {'Subnets': []}

    with pytest.raises(RelocationError, match='No subnets found in VPC vpc-dst for availability zone us-east-1a'):
        _relocator(ec2).relocate('i-old', 'vpc-dst')

    # the AMI is already there and is left behind
    ec2.create_image.assert_called_once()
    ec2.run_instances.assert_not_called()


def test_elastic_ip_failure_does_not_fail_relocation():
    ec2 = _happy_ec2()
    ec2.disassociate_address.side_effect = ClientError(
        {'Error': {'Code': 'AuthFailure', 'Message': 'nope'}}, 'DisassociateAddress')

    result = _relocator(ec2).relocate('i-old', 'vpc-dst')

    assert result.success is True
    ec2.associate_address.assert_not_called()


def test_instance_without_elastic_ip():
    ec2 = _happy_ec2()
    ec2.describe_addresses.return_value = {'Addresses': []}

    assert _relocator(ec2).handle_elastic_ip('i-old', 'i-new') is None
    ec2.disassociate_address.assert_not_called()


def test_polling_gives_up_after_max_polls():
    ec2 = MagicMock()
    ec2.describe_instances.return_value = _instance()
    sleeps = []

    with pytest.raises(RelocationError, match='Timed out waiting for instance i-old to be stopped'):
        _relocator(ec2, sleeps, max_polls=3).relocate('i-old', 'vpc-dst')
    assert len(sleeps) == 2
    ec2.create_image.assert_not_called()


def test_concurrent_relocation_of_same_instance_is_refused():
    guard = RelocationGuard()
    relocator = EC2Relocator(ec2_client=_happy_ec2(), poll_seconds=0, guard=guard, sleep=lambda s: None)

    with guard.hold('i-old'):
        with pytest.raises(RelocationInProgress):
            relocator.relocate('i-old', 'vpc-dst')

    assert not guard.is_active('i-old')
    assert relocator.relocate('i-old', 'vpc-dst').new_instance_id == 'i-new'
    assert not guard.is_active('i-old')


def test_elastic_ip_connection_error_is_logged_not_raised():
    ec2 = _happy_ec2()
    ec2.describe_addresses.side_effect = EndpointConnectionError(endpoint_url='https://ec2')
    relocator = _relocator(ec2)

    assert relocator.handle_elastic_ip('i-old', 'i-new') is None
    ec2.disassociate_address.assert_not_called()

    result = relocator.relocate('i-old', 'vpc-dst')
    assert result.success is True
    assert result.new_instance_id == 'i-new'
