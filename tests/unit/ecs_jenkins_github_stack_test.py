"""Unit tests for the ECS Jenkins stack.

The stacks are synthesized once per module; each test asserts against the
resulting CloudFormation template.
"""

import dataclasses

import aws_cdk as cdk
import aws_cdk.assertions as assertions
import pytest
from aws_cdk.assertions import Match
from cdk_nag import AwsSolutionsChecks

from ecs_jenkins_github.ecs_jenkins_github_stack import (
    EcsJenkinsGithubStack,
    _cidr_mask,
)
from ecs_jenkins_github.environments import (
    DEPLOYMENTS,
    build_stack_props,
    create_environment_stack,
)

DEV, PROD, DR = DEPLOYMENTS


def _synth(deployment, secrets):
    app = cdk.App()
    stack = EcsJenkinsGithubStack(
        app,
        deployment.construct_id,
        props=build_stack_props(deployment, secrets),
        env=cdk.Environment(region=deployment.config.aws_region),
    )
    return assertions.Template.from_stack(stack)


@pytest.fixture(scope="module")
def dev_template(dev_secrets):
    return _synth(DEV, dev_secrets)


@pytest.fixture(scope="module")
def prod_template(dev_secrets):
    return _synth(PROD, dev_secrets)


class TestNetwork:
    """Test the VPC and its subnets."""

    def test_vpc_cidr(self, dev_template):
        """Test that the VPC uses the configured range."""
        dev_template.has_resource_properties("AWS::EC2::VPC", {
            "CidrBlock": "10.0.0.0/16",
            "EnableDnsHostnames": True,
            "EnableDnsSupport": True,
        })

    def test_subnets_pinned_to_configured_cidrs(self, dev_template):
        """Test that every subnet uses exactly the configured CIDR."""
        config = DEV.config
        expected = [
            *config.public_subnet_cidrs,
            *config.private_subnet_cidrs,
            *config.database_subnet_cidrs,
        ]

        dev_template.resource_count_is("AWS::EC2::Subnet", len(expected))
        for cidr in expected:
            dev_template.has_resource_properties("AWS::EC2::Subnet", {"CidrBlock": cidr})

    def test_subnets_in_configured_zones(self, dev_template):
        """Test that subnets are placed in the configured availability zones."""
        for zone in DEV.config.availability_zones:
            dev_template.has_resource_properties("AWS::EC2::Subnet", {"AvailabilityZone": zone})

    def test_single_nat_gateway_in_dev(self, dev_template):
        """Test that dev shares one NAT gateway."""
        dev_template.resource_count_is("AWS::EC2::NatGateway", 1)

    def test_nat_gateway_per_zone_in_prod(self, prod_template):
        """Test that prod gets a NAT gateway in every availability zone."""
        prod_template.resource_count_is(
            "AWS::EC2::NatGateway", len(PROD.config.availability_zones)
        )

    def test_flow_logs(self, dev_template):
        """Test that VPC flow logs are sent to CloudWatch Logs."""
        dev_template.has_resource_properties("AWS::EC2::FlowLog", {"TrafficType": "ALL"})
        dev_template.has_resource_properties("AWS::Logs::LogGroup", {
            "LogGroupName": "/vpc/ecs-jenkins-dev/flow-logs",
            "RetentionInDays": 7,
        })


class TestEdge:
    """Test the load balancer and the web ACL."""

    def test_https_listener(self, dev_template):
        """Test that the load balancer terminates TLS on 443."""
        dev_template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 443,
            "Protocol": "HTTPS",
        })

    def test_http_redirects_to_https(self, dev_template):
        """Test that plain HTTP is redirected."""
        dev_template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 80,
            "DefaultActions": [
                Match.object_like({
                    "Type": "redirect",
                    "RedirectConfig": Match.object_like({"Port": "443", "Protocol": "HTTPS"}),
                })
            ],
        })

    def test_certificate_for_domain(self, dev_template):
        """Test that the certificate covers the environment's domain."""
        dev_template.has_resource_properties("AWS::CertificateManager::Certificate", {
            "DomainName": "jenkins-dev.example.com",
            "ValidationMethod": "DNS",
        })

    def test_web_acl_rules_without_blocked_addresses(self, dev_template):
        """Test that dev has no IP set and starts with the size rule."""
        dev_template.resource_count_is("AWS::WAFv2::IPSet", 0)
        dev_template.has_resource_properties("AWS::WAFv2::WebACL", {
            "Scope": "REGIONAL",
            "DefaultAction": {"Allow": {}},
            "Rules": Match.array_with([
                Match.object_like({
                    "Name": "MaxRequestSize",
                    "Priority": 0,
                    "Statement": {
                        "SizeConstraintStatement": Match.object_like({
                            "ComparisonOperator": "GT",
                            "Size": DEV.config.max_request_size,
                        }),
                    },
                }),
                Match.object_like({
                    "Name": "RequestRateLimit",
                    "Statement": {
                        "RateBasedStatement": {"Limit": 2000, "AggregateKeyType": "IP"},
                    },
                }),
            ]),
        })

    def test_blocked_addresses_in_prod(self, prod_template):
        """Test that prod blocks the configured addresses first."""
        prod_template.has_resource_properties("AWS::WAFv2::IPSet", {
            "Addresses": ["192.0.2.0/24", "198.51.100.23/32"],
            "IPAddressVersion": "IPV4",
        })
        prod_template.has_resource_properties("AWS::WAFv2::WebACL", {
            "Rules": Match.array_with([
                Match.object_like({"Name": "BlockedIpAddresses", "Priority": 0}),
            ]),
        })

    def test_web_acl_attached(self, dev_template):
        """Test that the web ACL is associated with the load balancer."""
        dev_template.resource_count_is("AWS::WAFv2::WebACLAssociation", 1)

    def test_security_hub_only_where_enabled(self, dev_template, prod_template):
        """Test that Security Hub follows the environment switch."""
        dev_template.resource_count_is("AWS::SecurityHub::Hub", 0)
        prod_template.resource_count_is("AWS::SecurityHub::Hub", 1)


class TestCompute:
    """Test the cluster capacity."""

    def test_worker_group_bounds(self, dev_template):
        """Test that the worker group follows the configured scaling bounds."""
        dev_template.has_resource_properties("AWS::AutoScaling::AutoScalingGroup", {
            "MinSize": "1",
            "MaxSize": "3",
            "DesiredCapacity": "1",
        })

    def test_spot_price_in_dev(self, dev_template):
        """Test that dev requests spot instances at the configured price."""
        dev_template.has_resource_properties("AWS::EC2::LaunchTemplate", {
            "LaunchTemplateData": Match.object_like({
                "InstanceType": "t3.medium",
                "InstanceMarketOptions": {
                    "MarketType": "spot",
                    "SpotOptions": Match.object_like({"MaxPrice": "0.0416"}),
                },
            }),
        })

    def test_on_demand_in_prod(self, prod_template):
        """Test that prod launch templates do not request spot capacity."""
        for launch_template in prod_template.find_resources("AWS::EC2::LaunchTemplate").values():
            assert "InstanceMarketOptions" not in launch_template["Properties"]["LaunchTemplateData"]

    def test_jenkins_instance_type(self, dev_template):
        """Test that the controller runs on its own instance type."""
        dev_template.has_resource_properties("AWS::EC2::LaunchTemplate", {
            "LaunchTemplateData": Match.object_like({
                "InstanceType": DEV.config.jenkins_instance_type,
                "KeyName": "ecs-jenkins-dev-key",
                "MetadataOptions": Match.object_like({"HttpTokens": "required"}),
            }),
        })

    def test_capacity_providers(self, dev_template):
        """Test that worker and controller capacity providers are registered."""
        dev_template.resource_count_is("AWS::ECS::CapacityProvider", 2)
        dev_template.has_resource_properties("AWS::ECS::CapacityProvider", {
            "Name": "jenkins-dev-jenkins",
        })

    def test_cluster(self, dev_template):
        """Test that the cluster is named after the environment."""
        dev_template.has_resource_properties("AWS::ECS::Cluster", {
            "ClusterName": "ecs-jenkins-dev-cluster",
            "ClusterSettings": [{"Name": "containerInsights", "Value": "enabled"}],
        })


class TestServices:
    """Test the Jenkins and Grafana services."""

    def test_jenkins_role_name(self, dev_template):
        """Test that the Jenkins task role has the configured name."""
        dev_template.has_resource_properties("AWS::IAM::Role", {
            "RoleName": "ecs-jenkins-dev-jenkins-role",
        })

    def test_jenkins_container(self, dev_template):
        """Test the Jenkins container image, port and settings."""
        dev_template.has_resource_properties("AWS::ECS::TaskDefinition", {
            "Family": "ecs-jenkins-dev-jenkins",
            "ContainerDefinitions": [
                Match.object_like({
                    "Image": "jenkins/jenkins:lts-jdk17",
                    "PortMappings": [Match.object_like({"ContainerPort": 8080})],
                    "Environment": Match.array_with([
                        {"Name": "JENKINS_URL", "Value": "https://jenkins-dev.example.com"},
                    ]),
                    "MountPoints": [Match.object_like({"ContainerPath": "/var/jenkins_home"})],
                }),
            ],
        })

    def test_jenkins_home_on_efs(self, dev_template):
        """Test that JENKINS_HOME lives on an encrypted file system."""
        dev_template.has_resource_properties("AWS::EFS::FileSystem", {"Encrypted": True})
        dev_template.has_resource_properties("AWS::EFS::AccessPoint", {
            "PosixUser": {"Uid": "1000", "Gid": "1000"},
        })

    def test_single_jenkins_controller(self, dev_template):
        """Test that one controller runs and is replaced stop-first."""
        dev_template.has_resource_properties("AWS::ECS::Service", {
            "ServiceName": "ecs-jenkins-dev-jenkins",
            "DesiredCount": 1,
            "DeploymentConfiguration": Match.object_like({
                "MinimumHealthyPercent": 0,
                "MaximumPercent": 100,
            }),
        })

    def test_grafana_behind_path_rule(self, dev_template):
        """Test that Grafana is routed on /grafana."""
        dev_template.has_resource_properties("AWS::ElasticLoadBalancingV2::ListenerRule", {
            "Priority": 10,
            "Conditions": [
                Match.object_like({
                    "Field": "path-pattern",
                    "PathPatternConfig": {"Values": ["/grafana", "/grafana/*"]},
                }),
            ],
        })

    def test_jenkins_health_check(self, dev_template):
        """Test that the Jenkins target group checks the login page."""
        dev_template.has_resource_properties("AWS::ElasticLoadBalancingV2::TargetGroup", {
            "HealthCheckPath": "/login",
            "Port": 8080,
            "TargetType": "ip",
        })

    def test_build_repository(self, dev_template):
        """Test that built images are scanned on push."""
        dev_template.has_resource_properties("AWS::ECR::Repository", {
            "RepositoryName": "ecs-jenkins-dev-builds",
            "ImageScanningConfiguration": {"ScanOnPush": True},
        })


class TestDatabase:
    """Test the PostgreSQL database."""

    def test_dev_database(self, dev_template):
        """Test the dev database name, class and availability."""
        dev_template.has_resource_properties("AWS::RDS::DBInstance", {
            "DBName": "devappdb",
            "DBInstanceClass": "db.t3.micro",
            "Engine": "postgres",
            "MultiAZ": False,
            "StorageEncrypted": True,
            "BackupRetentionPeriod": 7,
        })

    def test_prod_database(self, prod_template):
        """Test that the prod database is multi-AZ and protected."""
        prod_template.has_resource_properties("AWS::RDS::DBInstance", {
            "DBName": "prodappdb",
            "MultiAZ": True,
            "DeletionProtection": True,
            "BackupRetentionPeriod": 30,
        })
        prod_template.has_resource("AWS::RDS::DBInstance", {"DeletionPolicy": "Snapshot"})

    def test_credentials_secret(self, dev_template):
        """Test that the credentials are stored in Secrets Manager."""
        dev_template.has_resource_properties("AWS::SecretsManager::Secret", {
            "Name": "ecs-jenkins-dev/database/credentials",
        })

    def test_password_not_in_outputs(self, dev_template, dev_secrets):
        """Test that the database password is not exported."""
        outputs = dev_template.find_outputs("*")
        assert dev_secrets.db_password.get_secret_value() not in str(outputs)


class TestMonitoring:
    """Test alarms, dashboard and outputs."""

    def test_alarms_notify_topic(self, dev_template):
        """Test that every alarm notifies the alarm topic."""
        dev_template.resource_count_is("AWS::CloudWatch::Alarm", 5)
        for alarm in dev_template.find_resources("AWS::CloudWatch::Alarm").values():
            assert len(alarm["Properties"]["AlarmActions"]) == 1

    def test_alarm_topic(self, dev_template):
        """Test that the alarm topic is named after the environment."""
        dev_template.has_resource_properties("AWS::SNS::Topic", {
            "TopicName": "ecs-jenkins-dev-alarms",
        })

    def test_dashboard(self, dev_template):
        """Test that a dashboard is created."""
        dev_template.has_resource_properties("AWS::CloudWatch::Dashboard", {
            "DashboardName": "ecs-jenkins-dev-dashboard",
        })

    @pytest.mark.parametrize("output_id", [
        "VpcId",
        "ClusterName",
        "JenkinsUrl",
        "GitHubWebhookUrl",
        "LoadBalancerDns",
        "DatabaseEndpoint",
        "DatabaseSecretArn",
        "GitHubSecretArn",
        "GrafanaUrl",
        "EcrRepositoryUri",
        "AlarmTopicArn",
    ])
    def test_outputs_exported(self, dev_template, output_id):
        """Test that each output is exported under the resource prefix."""
        dev_template.has_output(output_id, {
            "Export": {"Name": f"ecs-jenkins-dev-{output_id}"},
        })

    def test_webhook_url(self, dev_template):
        """Test the webhook URL to register on GitHub."""
        dev_template.has_output("GitHubWebhookUrl", {
            "Value": "https://jenkins-dev.example.com/github-webhook/",
        })


class TestCompliance:
    """Test the stacks against the AWS Solutions cdk-nag rules."""

    @pytest.mark.parametrize("deployment", DEPLOYMENTS, ids=lambda d: d.environment)
    def test_no_unsuppressed_findings(self, secret_env, missing_env_file, deployment):
        """Test that each environment stack synthesizes without nag errors."""
        app = cdk.App()
        cdk.Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

        stack = create_environment_stack(app, deployment, env_file=missing_env_file)

        errors = assertions.Annotations.from_stack(stack).find_error(
            "*", Match.string_like_regexp("AwsSolutions-.*")
        )
        assert [error.entry.data for error in errors] == []

    def test_deletion_protection_only_suppressed_outside_prod(self, dev_template, prod_template):
        """Test that only the disposable databases skip deletion protection."""
        dev_template.has_resource("AWS::RDS::DBInstance", {
            "Metadata": {
                "cdk_nag": {
                    "rules_to_suppress": Match.array_with([
                        Match.object_like({"id": "AwsSolutions-RDS10"}),
                    ]),
                },
            },
        })
        prod_template.has_resource("AWS::RDS::DBInstance", {
            "Metadata": {
                "cdk_nag": {
                    "rules_to_suppress": Match.not_(Match.array_with([
                        Match.object_like({"id": "AwsSolutions-RDS10"}),
                    ])),
                },
            },
        })


class TestHelpers:
    """Test the module helpers."""

    def test_cidr_mask_uses_largest_block(self):
        """Test that the mask fits the largest subnet."""
        assert _cidr_mask(["10.0.1.0/24", "10.0.4.0/22"]) == 22

    def test_props_hide_passwords(self, dev_secrets):
        """Test that passwords are kept out of the props representation."""
        props = build_stack_props(DEV, dev_secrets)

        assert "s3cret-passw0rd" not in repr(props)
        assert "grafana-passw0rd" not in repr(props)

    def test_props_are_frozen(self, dev_secrets):
        """Test that props cannot be modified."""
        props = build_stack_props(DEV, dev_secrets)

        with pytest.raises(dataclasses.FrozenInstanceError):
            props.environment = "prod"
