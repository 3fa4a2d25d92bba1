"""
Tests for transform.py - asset records to graph nodes.
"""

from posture.transform import convert_tags, get_asset_group, transform_asset_data


def test_ec2_record_becomes_compute_node():
    """EC2 rows keep their collector columns under dashboard metadata keys."""
    records = [{
        'UniqueId': 'acct_i-0abc',
        'InstanceId': 'i-0abc',
        'InstanceType': 't3.micro',
        'VpcId': 'vpc-1',
        'SubnetId': 'subnet-1',
        'IsAI': True,
        'Tags': [{'Key': 'Name', 'Value': 'web'}, {'Key': 'env', 'Value': 'prod'}],
    }]

    [node] = transform_asset_data('EC2', records)

    assert node.id == 'acct_i-0abc'
    assert node.name == 'i-0abc'
    assert node.type == 'EC2'
    assert node.group == 'Compute'
    assert node.val == 1
    assert node.metadata['assetType'] == 'EC2'
    assert node.metadata['instanceId'] == 'i-0abc'
    assert node.metadata['instanceType'] == 't3.micro'
    assert node.metadata['VpcId'] == 'vpc-1'
    assert node.metadata['subnetId'] == 'subnet-1'
    assert node.metadata['IsAI'] is True
    assert node.metadata['tags'] == {'Name': 'web', 'env': 'prod'}
    # columns missing from the table are not invented
    assert 'state' not in node.metadata


def test_id_prefers_type_specific_column():
    """``<type>_id`` wins over ``<type>Id``, ``id`` and ``UniqueId``."""
    records = [
        {'vpc_id': 'vpc-a', 'vpcId': 'other', 'id': 'x', 'VpcId': 'vpc-a'},
        {'vpcId': 'vpc-b', 'id': 'x', 'VpcId': 'vpc-b'},
        {'id': 'plain-id', 'VpcId': 'vpc-c'},
        {'VpcId': 'vpc-d'},
    ]

    nodes = transform_asset_data('VPC', records)

    assert [n.id for n in nodes] == ['vpc-a', 'vpc-b', 'plain-id', 'vpc-d']
    assert all(n.group == 'Networking' for n in nodes)


def test_user_alias_is_iam_user():
    records = [{'UserId': 'AIDA1', 'UserName': 'alice', 'AccessKeyIds': ['AKIA1']}]

    [node] = transform_asset_data('User', records)

    assert node.type == 'IAMUser'
    assert node.group == 'Administrative'
    assert node.name == 'alice'
    assert node.metadata['accessKeyIds'] == ['AKIA1']


def test_unknown_asset_type_keeps_only_asset_type():
    records = [{'UniqueId': 'fn-1', 'FunctionName': 'handler'}]

    [node] = transform_asset_data('Lambda', records)

    assert node.name == 'fn-1'
    assert node.group == 'Lambda'
    assert node.metadata == {'assetType': 'Lambda'}


def test_record_without_name_or_id():
    [node] = transform_asset_data('S3', [{'CreationDate': '2024-01-01'}])

    assert node.name == 'Unknown'
    assert node.id == 'Unknown'
    assert node.metadata['creationDate'] == '2024-01-01'


def test_kubernetes_labels_become_tags():
    records = [{'UniqueId': 'node-1', 'Name': 'ip-10-0-0-1', 'Labels': {'alpha.eksctl.io/instance-id': 'i-1'}}]

    [node] = transform_asset_data('K8sNode', records)

    assert node.group == 'Kubernetes'
    assert node.name == 'ip-10-0-0-1'
    assert node.metadata['tags'] == {'alpha.eksctl.io/instance-id': 'i-1'}


def test_convert_tags():
    assert convert_tags(None) is None
    assert convert_tags({'a': 'b'}) == {'a': 'b'}
    assert convert_tags([{'Key': 'a', 'Value': 'b'}, {'junk': 1}]) == {'a': 'b'}


def test_asset_groups():
    assert get_asset_group('IGW') == 'Networking'
    assert get_asset_group('IAMPolicy') == 'Administrative'
    assert get_asset_group('K8sService') == 'Kubernetes'
    assert get_asset_group('Mystery') == 'Mystery'


def test_aliased_types_keep_directory_id_columns():
    """The id column is looked up with the directory's type name, not the alias."""
    [user] = transform_asset_data('User', [{'user_id': 'u-1', 'UserName': 'alice', 'UniqueId': 'acct_AIDA'}])
    [eni] = transform_asset_data('NetworkInterface', [{'networkinterface_id': 'ni-x', 'NetworkInterfaceId': 'eni-1'}])

    assert user.id == 'u-1'
    assert user.type == 'IAMUser'
    assert eni.id == 'ni-x'
    assert eni.type == 'NI'
    assert eni.metadata['networkInterfaceId'] == 'eni-1'
