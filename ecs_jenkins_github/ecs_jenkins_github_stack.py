"""Jenkins on ECS with GitHub integration.

This module defines the AWS CDK stack containing:
- VPC with public, private and isolated database subnets on fixed CIDRs
- Internet-facing ALB behind a WAF web ACL with OWASP protections
- ECS cluster on EC2 capacity (general workers and a dedicated Jenkins controller)
- Jenkins service with JENKINS_HOME on EFS and GitHub credentials
- RDS PostgreSQL database
- Grafana, CloudWatch alarms and a dashboard
"""
import ipaddress
import json
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from constructs import Construct
import aws_cdk as cdk
from aws_cdk import (
    Stack,
    aws_autoscaling as autoscaling,
    aws_certificatemanager as acm,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cw_actions,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_efs as efs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_kms as kms,
    aws_logs as logs,
    aws_rds as rds,
    aws_s3 as s3,
    aws_secretsmanager as secretsmanager,
    aws_securityhub as securityhub,
    aws_sns as sns,
    aws_wafv2 as wafv2,
    CfnOutput,
    Duration,
    RemovalPolicy,
    SecretValue,
)
from cdk_nag import NagPackSuppression, NagSuppressions

from ecs_jenkins_github import waf_rules

JENKINS_IMAGE = "jenkins/jenkins:lts-jdk17"
GRAFANA_IMAGE = "grafana/grafana-oss:11.2.0"
GRAFANA_PORT = 3000
JENKINS_HOME = "/var/jenkins_home"


@dataclass(frozen=True)
class EcsJenkinsGithubProps:
    """Parameters of one :class:`EcsJenkinsGithubStack` instance."""

    aws_region: str
    vpc_cidr: str
    public_subnet_cidrs: Sequence[str]
    private_subnet_cidrs: Sequence[str]
    database_subnet_cidrs: Sequence[str]
    availability_zones: Sequence[str]
    environment: str
    project_name: str
    container_port: int
    key_name: str
    jenkins_instance_type: str
    jenkins_role_name: str
    db_username: str
    db_password: str = field(repr=False)
    db_name: str
    grafana_admin_password: str = field(repr=False)
    domain_name: str
    ec2_instance_type: str
    db_instance_type: str
    min_instance_count: int
    max_instance_count: int
    desired_instance_count: int
    use_spot_instances: bool
    spot_price: Optional[str]
    blocked_ip_addresses: Sequence[str]
    max_request_size: int
    request_limit: int
    enable_security_hub: bool
    resource_prefix: str
    is_production: bool
    nat_gateways: int

    @property
    def jenkins_url(self) -> str:
        return f"https://{self.domain_name}"


class EcsJenkinsGithubStack(Stack):
    """CDK Stack running a Jenkins CI/CD server on ECS."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        props: EcsJenkinsGithubProps,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.props = props
        self._prefix = props.resource_prefix
        self._removal_policy = RemovalPolicy.RETAIN if props.is_production else RemovalPolicy.DESTROY
        self._key_pair = ec2.KeyPair.from_key_pair_name(self, "KeyPair", props.key_name)

        # Network and edge
        self.vpc = self._create_vpc()
        self.load_balancer, self.listener = self._create_load_balancer()
        self.web_acl = self._create_web_acl()
        if props.enable_security_hub:
            self._enable_security_hub()

        # Compute
        self.cluster = self._create_ecs_cluster()
        self.worker_capacity = self._create_capacity_provider(
            "Worker",
            instance_type=props.ec2_instance_type,
            min_capacity=props.min_instance_count,
            max_capacity=props.max_instance_count,
            desired_capacity=props.desired_instance_count,
            spot_price=props.spot_price if props.use_spot_instances else None,
        )
        self.jenkins_capacity = self._create_capacity_provider(
            "Jenkins",
            instance_type=props.jenkins_instance_type,
            min_capacity=1,
            max_capacity=1,
            desired_capacity=1,
        )

        # Data and services
        self.database = self._create_database()
        self.log_groups = self._create_log_groups()
        self.jenkins_service = self._create_jenkins_service()
        self.grafana_service = self._create_grafana_service()

        # Observability
        self.alarm_topic = self._create_monitoring()

        # Outputs
        self._create_outputs()

    def _create_vpc(self) -> ec2.Vpc:
        """Create the VPC with one public, private and database subnet per AZ.

        CDK allocates subnet ranges itself, so the generated subnets are
        re-pinned to the configured CIDR blocks afterwards.

        Returns:
            ec2.Vpc: The created VPC
        """
        props = self.props

        vpc = ec2.Vpc(
            self,
            "Vpc",
            vpc_name=f"{self._prefix}-vpc",
            ip_addresses=ec2.IpAddresses.cidr(props.vpc_cidr),
            availability_zones=list(props.availability_zones),
            nat_gateways=props.nat_gateways,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=_cidr_mask(props.public_subnet_cidrs),
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=_cidr_mask(props.private_subnet_cidrs),
                ),
                ec2.SubnetConfiguration(
                    name="Database",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=_cidr_mask(props.database_subnet_cidrs),
                ),
            ],
            enable_dns_hostnames=True,
            enable_dns_support=True,
        )

        _pin_subnet_cidrs(vpc.public_subnets, props.public_subnet_cidrs)
        _pin_subnet_cidrs(vpc.private_subnets, props.private_subnet_cidrs)
        _pin_subnet_cidrs(vpc.isolated_subnets, props.database_subnet_cidrs)

        flow_log_group = logs.LogGroup(
            self,
            "FlowLogGroup",
            log_group_name=f"/vpc/{self._prefix}/flow-logs",
            retention=self._log_retention,
            removal_policy=self._removal_policy,
        )
        vpc.add_flow_log(
            "FlowLog",
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(flow_log_group),
            traffic_type=ec2.FlowLogTrafficType.ALL,
        )

        cdk.Tags.of(vpc).add("Name", f"{self._prefix}-vpc")

        return vpc

    def _create_load_balancer(
        self,
    ) -> tuple[elbv2.ApplicationLoadBalancer, elbv2.ApplicationListener]:
        """Create the public ALB with an HTTPS listener and HTTP redirect.

        Returns:
            The load balancer and its HTTPS listener
        """
        access_logs_bucket = s3.Bucket(
            self,
            "AccessLogsBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            lifecycle_rules=[s3.LifecycleRule(expiration=Duration.days(90))],
            removal_policy=RemovalPolicy.RETAIN,
        )
        NagSuppressions.add_resource_suppressions(
            access_logs_bucket,
            [
                NagPackSuppression(
                    id="AwsSolutions-S1",
                    reason="Bucket is the access log destination of the load balancer",
                ),
            ],
        )

        load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "LoadBalancer",
            load_balancer_name=f"{self._prefix}-alb",
            vpc=self.vpc,
            internet_facing=True,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            drop_invalid_header_fields=True,
        )
        load_balancer.log_access_logs(access_logs_bucket, prefix="alb")

        certificate = acm.Certificate(
            self,
            "Certificate",
            domain_name=self.props.domain_name,
            validation=acm.CertificateValidation.from_dns(),
        )

        listener = load_balancer.add_listener(
            "HttpsListener",
            port=443,
            protocol=elbv2.ApplicationProtocol.HTTPS,
            certificates=[elbv2.ListenerCertificate.from_certificate_manager(certificate)],
            ssl_policy=elbv2.SslPolicy.RECOMMENDED_TLS,
            open=True,
        )
        load_balancer.add_redirect(source_port=80, target_port=443)

        return load_balancer, listener

    def _create_web_acl(self) -> wafv2.CfnWebACL:
        """Create the regional web ACL and attach it to the load balancer.

        Returns:
            wafv2.CfnWebACL: The created web ACL
        """
        props = self.props

        ip_set_arn = None
        if props.blocked_ip_addresses:
            ip_set = wafv2.CfnIPSet(
                self,
                "BlockedIpSet",
                name=f"{self._prefix}-blocked-ips",
                scope="REGIONAL",
                ip_address_version="IPV4",
                addresses=list(props.blocked_ip_addresses),
            )
            ip_set_arn = ip_set.attr_arn

        web_acl = wafv2.CfnWebACL(
            self,
            "WebAcl",
            name=f"{self._prefix}-web-acl",
            scope="REGIONAL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            visibility_config=waf_rules.visibility_config(f"{self._prefix}-web-acl"),
            rules=waf_rules.build_rules(
                max_request_size=props.max_request_size,
                request_limit=props.request_limit,
                ip_set_arn=ip_set_arn,
            ),
        )

        wafv2.CfnWebACLAssociation(
            self,
            "WebAclAssociation",
            resource_arn=self.load_balancer.load_balancer_arn,
            web_acl_arn=web_acl.attr_arn,
        )

        return web_acl

    def _enable_security_hub(self) -> securityhub.CfnHub:
        return securityhub.CfnHub(
            self,
            "SecurityHub",
            enable_default_standards=True,
            auto_enable_controls=True,
        )

    def _create_ecs_cluster(self) -> ecs.Cluster:
        """Create ECS cluster."""
        return ecs.Cluster(
            self,
            "Cluster",
            cluster_name=f"{self._prefix}-cluster",
            vpc=self.vpc,
            container_insights_v2=ecs.ContainerInsights.ENABLED,
        )

    def _create_capacity_provider(
        self,
        name: str,
        *,
        instance_type: str,
        min_capacity: int,
        max_capacity: int,
        desired_capacity: int,
        spot_price: Optional[str] = None,
    ) -> ecs.AsgCapacityProvider:
        """Create an EC2 Auto Scaling capacity provider and register it on the cluster.

        Args:
            name: Logical name prefix of the created constructs
            instance_type: EC2 instance type of the group
            min_capacity: Minimum number of instances
            max_capacity: Maximum number of instances
            desired_capacity: Initial number of instances
            spot_price: Maximum hourly spot price, on-demand capacity when omitted

        Returns:
            ecs.AsgCapacityProvider: The registered capacity provider
        """
        instance_role = iam.Role(
            self,
            f"{name}InstanceRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
            ],
        )

        security_group = ec2.SecurityGroup(
            self,
            f"{name}InstanceSecurityGroup",
            vpc=self.vpc,
            description=f"Security group for {name.lower()} ECS container instances",
            allow_all_outbound=True,
        )

        spot_options = None
        if spot_price:
            spot_options = ec2.LaunchTemplateSpotOptions(
                max_price=float(spot_price),
                request_type=ec2.SpotRequestType.ONE_TIME,
            )

        launch_template = ec2.LaunchTemplate(
            self,
            f"{name}LaunchTemplate",
            instance_type=ec2.InstanceType(instance_type),
            machine_image=ecs.EcsOptimizedImage.amazon_linux2023(),
            role=instance_role,
            security_group=security_group,
            user_data=ec2.UserData.for_linux(),
            key_pair=self._key_pair,
            require_imdsv2=True,
            spot_options=spot_options,
            block_devices=[
                ec2.BlockDevice(
                    device_name="/dev/xvda",
                    volume=ec2.BlockDeviceVolume.ebs(
                        30,
                        encrypted=True,
                        volume_type=ec2.EbsDeviceVolumeType.GP3,
                    ),
                )
            ],
        )

        auto_scaling_group = autoscaling.AutoScalingGroup(
            self,
            f"{name}AutoScalingGroup",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            launch_template=launch_template,
            min_capacity=min_capacity,
            max_capacity=max_capacity,
            desired_capacity=desired_capacity,
        )

        # Capacity provider names must not start with "ecs", "aws" or "fargate"
        capacity_provider = ecs.AsgCapacityProvider(
            self,
            f"{name}CapacityProvider",
            capacity_provider_name=f"jenkins-{self.props.environment}-{name.lower()}",
            auto_scaling_group=auto_scaling_group,
            enable_managed_termination_protection=False,
        )
        self.cluster.add_asg_capacity_provider(capacity_provider)

        # Registration adds the drain hook function and topic under the group
        NagSuppressions.add_resource_suppressions(
            auto_scaling_group,
            [
                NagPackSuppression(
                    id="AwsSolutions-AS3",
                    reason="Scaling activity is driven and reported by the ECS capacity provider",
                ),
                NagPackSuppression(
                    id="AwsSolutions-L1",
                    reason="Instance drain hook function runtime is managed by the ECS capacity provider construct",
                ),
                NagPackSuppression(
                    id="AwsSolutions-SNS3",
                    reason="Lifecycle hook topic only carries instance termination notices from Auto Scaling",
                ),
            ],
            apply_to_children=True,
        )

        return capacity_provider

    def _create_database(self) -> rds.DatabaseInstance:
        """Create the RDS PostgreSQL instance in the isolated subnets.

        Returns:
            rds.DatabaseInstance: The created database instance
        """
        props = self.props

        self.database_secret = secretsmanager.Secret(
            self,
            "DatabaseCredentials",
            secret_name=f"{self._prefix}/database/credentials",
            description=f"Master credentials of the {props.environment} Jenkins database",
            secret_object_value={
                "username": SecretValue.unsafe_plain_text(props.db_username),
                "password": SecretValue.unsafe_plain_text(props.db_password),
            },
            removal_policy=self._removal_policy,
        )

        database_security_group = ec2.SecurityGroup(
            self,
            "DatabaseSecurityGroup",
            vpc=self.vpc,
            description="Security group for the Jenkins PostgreSQL database",
            allow_all_outbound=False,
        )

        database = rds.DatabaseInstance(
            self,
            "Database",
            instance_identifier=f"{self._prefix}-db",
            engine=rds.DatabaseInstanceEngine.postgres(version=rds.PostgresEngineVersion.VER_16_3),
            instance_type=ec2.InstanceType(props.db_instance_type),
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            security_groups=[database_security_group],
            credentials=rds.Credentials.from_secret(self.database_secret),
            database_name=props.db_name,
            allocated_storage=20,
            max_allocated_storage=100,
            storage_encrypted=True,
            multi_az=props.is_production,
            backup_retention=Duration.days(30 if props.is_production else 7),
            cloudwatch_logs_exports=["postgresql", "upgrade"],
            deletion_protection=props.is_production,
            removal_policy=RemovalPolicy.SNAPSHOT if props.is_production else RemovalPolicy.DESTROY,
        )
        NagSuppressions.add_resource_suppressions(
            self.database_secret,
            [
                NagPackSuppression(
                    id="AwsSolutions-SMG4",
                    reason="Master credentials are supplied per environment at deploy time",
                ),
            ],
        )
        NagSuppressions.add_resource_suppressions(
            database,
            [
                NagPackSuppression(
                    id="AwsSolutions-RDS11",
                    reason="Database is only reachable from the cluster on the default port",
                ),
            ],
        )
        if not props.is_production:
            NagSuppressions.add_resource_suppressions(
                database,
                [
                    NagPackSuppression(
                        id="AwsSolutions-RDS10",
                        reason=f"The {props.environment} database is disposable and torn down with the stack",
                    ),
                ],
            )

        return database

    def _create_log_groups(self) -> Dict[str, logs.LogGroup]:
        """Create CloudWatch log groups."""
        return {
            name: logs.LogGroup(
                self,
                f"{name.capitalize()}LogGroup",
                log_group_name=f"/ecs/{self._prefix}/{name}",
                retention=self._log_retention,
                removal_policy=self._removal_policy,
            )
            for name in ("jenkins", "grafana")
        }

    def _create_jenkins_service(self) -> ecs.Ec2Service:
        """Create the Jenkins controller service.

        Jenkins runs on the dedicated controller capacity, keeps JENKINS_HOME
        on EFS and is the default target of the HTTPS listener.

        Returns:
            ecs.Ec2Service: The Jenkins service
        """
        props = self.props

        self.github_secret = secretsmanager.Secret(
            self,
            "GitHubCredentials",
            secret_name=f"{self._prefix}/github",
            description="GitHub access token and webhook secret used by Jenkins",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"token": ""}),
                generate_string_key="webhook_secret",
                exclude_punctuation=True,
                password_length=40,
            ),
            removal_policy=self._removal_policy,
        )
        NagSuppressions.add_resource_suppressions(
            self.github_secret,
            [
                NagPackSuppression(
                    id="AwsSolutions-SMG4",
                    reason="GitHub tokens are rotated from GitHub, not by Secrets Manager",
                ),
            ],
        )

        self.repository = ecr.Repository(
            self,
            "Repository",
            repository_name=f"{self._prefix}-builds",
            image_scan_on_push=True,
            lifecycle_rules=[
                ecr.LifecycleRule(
                    description="Keep last 20 images",
                    max_image_count=20,
                )
            ],
            removal_policy=self._removal_policy,
        )

        # Task role: what pipelines running inside Jenkins may do
        task_role = iam.Role(
            self,
            "JenkinsTaskRole",
            role_name=props.jenkins_role_name,
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            description=f"Jenkins controller role for the {props.environment} environment",
        )
        self.repository.grant_pull_push(task_role)
        task_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "ecs:DescribeServices",
                    "ecs:DescribeTaskDefinition",
                    "ecs:RegisterTaskDefinition",
                    "ecs:UpdateService",
                ],
                resources=["*"],
            )
        )
        task_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["iam:PassRole"],
                resources=["*"],
                conditions={"StringEquals": {"iam:PassedToService": "ecs-tasks.amazonaws.com"}},
            )
        )

        file_system = efs.FileSystem(
            self,
            "JenkinsHome",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            encrypted=True,
            performance_mode=efs.PerformanceMode.GENERAL_PURPOSE,
            throughput_mode=efs.ThroughputMode.BURSTING,
            removal_policy=self._removal_policy,
        )
        access_point = file_system.add_access_point(
            "JenkinsHomeAccessPoint",
            path="/jenkins-home",
            create_acl=efs.Acl(owner_uid="1000", owner_gid="1000", permissions="755"),
            posix_user=efs.PosixUser(uid="1000", gid="1000"),
        )
        file_system.grant_read_write(task_role)

        task_definition = ecs.Ec2TaskDefinition(
            self,
            "JenkinsTaskDefinition",
            family=f"{self._prefix}-jenkins",
            network_mode=ecs.NetworkMode.AWS_VPC,
            task_role=task_role,
        )
        task_definition.add_volume(
            name="jenkins-home",
            efs_volume_configuration=ecs.EfsVolumeConfiguration(
                file_system_id=file_system.file_system_id,
                transit_encryption="ENABLED",
                authorization_config=ecs.AuthorizationConfig(
                    access_point_id=access_point.access_point_id,
                    iam="ENABLED",
                ),
            ),
        )

        container = task_definition.add_container(
            "jenkins",
            container_name="jenkins",
            image=ecs.ContainerImage.from_registry(JENKINS_IMAGE),
            memory_reservation_mib=1024,
            logging=ecs.LogDriver.aws_logs(
                stream_prefix="jenkins",
                log_group=self.log_groups["jenkins"],
            ),
            environment={
                "JENKINS_URL": props.jenkins_url,
                "JENKINS_OPTS": f"--httpPort={props.container_port}",
                "AWS_REGION": props.aws_region,
                "ECS_CLUSTER": self.cluster.cluster_name,
                "ECR_REPOSITORY_URI": self.repository.repository_uri,
            },
            secrets={
                "GITHUB_TOKEN": ecs.Secret.from_secrets_manager(self.github_secret, "token"),
                "GITHUB_WEBHOOK_SECRET": ecs.Secret.from_secrets_manager(
                    self.github_secret, "webhook_secret"
                ),
            },
        )
        container.add_port_mappings(
            ecs.PortMapping(
                container_port=props.container_port,
                protocol=ecs.Protocol.TCP,
            )
        )
        container.add_mount_points(
            ecs.MountPoint(
                container_path=JENKINS_HOME,
                source_volume="jenkins-home",
                read_only=False,
            )
        )
        NagSuppressions.add_resource_suppressions(
            task_definition,
            [
                NagPackSuppression(
                    id="AwsSolutions-ECS2",
                    reason="Environment variables hold non-sensitive settings, credentials come from Secrets Manager",
                ),
            ],
        )

        # A single controller owns JENKINS_HOME, so the old task stops before the new one starts
        service = ecs.Ec2Service(
            self,
            "JenkinsService",
            service_name=f"{self._prefix}-jenkins",
            cluster=self.cluster,
            task_definition=task_definition,
            desired_count=1,
            min_healthy_percent=0,
            max_healthy_percent=100,
            capacity_provider_strategies=[
                ecs.CapacityProviderStrategy(
                    capacity_provider=self.jenkins_capacity.capacity_provider_name,
                    weight=1,
                )
            ],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            circuit_breaker=ecs.DeploymentCircuitBreaker(rollback=True),
            health_check_grace_period=Duration.minutes(5),
        )

        file_system.connections.allow_default_port_from(service, "Allow NFS from Jenkins tasks")
        self.database.connections.allow_default_port_from(service, "Allow PostgreSQL from Jenkins tasks")

        self.jenkins_target_group = self.listener.add_targets(
            "JenkinsTarget",
            port=props.container_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[service],
            deregistration_delay=Duration.seconds(30),
            health_check=elbv2.HealthCheck(
                path="/login",
                healthy_http_codes="200",
                interval=Duration.seconds(30),
                timeout=Duration.seconds(10),
                healthy_threshold_count=2,
                unhealthy_threshold_count=5,
            ),
        )

        return service

    def _create_grafana_service(self) -> ecs.Ec2Service:
        """Create the Grafana service served under /grafana on the load balancer."""
        props = self.props

        self.grafana_secret = secretsmanager.Secret(
            self,
            "GrafanaAdminCredentials",
            secret_name=f"{self._prefix}/grafana/admin",
            description="Grafana admin user password",
            secret_string_value=SecretValue.unsafe_plain_text(props.grafana_admin_password),
            removal_policy=self._removal_policy,
        )
        NagSuppressions.add_resource_suppressions(
            self.grafana_secret,
            [
                NagPackSuppression(
                    id="AwsSolutions-SMG4",
                    reason="Grafana admin password is supplied per environment at deploy time",
                ),
            ],
        )

        task_role = iam.Role(
            self,
            "GrafanaTaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("CloudWatchReadOnlyAccess")
            ],
        )

        task_definition = ecs.Ec2TaskDefinition(
            self,
            "GrafanaTaskDefinition",
            family=f"{self._prefix}-grafana",
            network_mode=ecs.NetworkMode.AWS_VPC,
            task_role=task_role,
        )
        container = task_definition.add_container(
            "grafana",
            container_name="grafana",
            image=ecs.ContainerImage.from_registry(GRAFANA_IMAGE),
            memory_reservation_mib=256,
            logging=ecs.LogDriver.aws_logs(
                stream_prefix="grafana",
                log_group=self.log_groups["grafana"],
            ),
            environment={
                "GF_SERVER_ROOT_URL": f"{props.jenkins_url}/grafana/",
                "GF_SERVER_SERVE_FROM_SUB_PATH": "true",
                "GF_SECURITY_ADMIN_USER": "admin",
                "GF_AUTH_ANONYMOUS_ENABLED": "false",
                "AWS_REGION": props.aws_region,
            },
            secrets={
                "GF_SECURITY_ADMIN_PASSWORD": ecs.Secret.from_secrets_manager(self.grafana_secret),
            },
        )
        container.add_port_mappings(ecs.PortMapping(container_port=GRAFANA_PORT))
        NagSuppressions.add_resource_suppressions(
            task_definition,
            [
                NagPackSuppression(
                    id="AwsSolutions-ECS2",
                    reason="Environment variables hold non-sensitive settings, the admin password comes from Secrets Manager",
                ),
            ],
        )

        service = ecs.Ec2Service(
            self,
            "GrafanaService",
            service_name=f"{self._prefix}-grafana",
            cluster=self.cluster,
            task_definition=task_definition,
            desired_count=1,
            capacity_provider_strategies=[
                ecs.CapacityProviderStrategy(
                    capacity_provider=self.worker_capacity.capacity_provider_name,
                    weight=1,
                )
            ],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            circuit_breaker=ecs.DeploymentCircuitBreaker(rollback=True),
            health_check_grace_period=Duration.minutes(2),
        )

        self.listener.add_targets(
            "GrafanaTarget",
            priority=10,
            conditions=[elbv2.ListenerCondition.path_patterns(["/grafana", "/grafana/*"])],
            port=GRAFANA_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[service],
            health_check=elbv2.HealthCheck(path="/grafana/api/health"),
        )

        return service

    def _create_monitoring(self) -> sns.Topic:
        """Set up CloudWatch alarms, the alarm topic and the dashboard.

        Returns:
            sns.Topic: The topic alarms notify
        """
        alarm_topic = sns.Topic(
            self,
            "AlarmTopic",
            topic_name=f"{self._prefix}-alarms",
            display_name=f"Jenkins {self.props.environment} alarms",
            master_key=kms.Alias.from_alias_name(self, "SnsKey", "alias/aws/sns"),
            enforce_ssl=True,
        )

        jenkins_cpu = self.jenkins_service.metric_cpu_utilization()
        jenkins_memory = self.jenkins_service.metric_memory_utilization()
        database_cpu = self.database.metric_cpu_utilization()
        database_free_storage = self.database.metric_free_storage_space()
        elb_5xx = self.load_balancer.metrics.http_code_elb(
            elbv2.HttpCodeElb.ELB_5XX_COUNT,
            period=Duration.minutes(5),
            statistic="Sum",
        )

        alarms = [
            cloudwatch.Alarm(
                self,
                "JenkinsCpuAlarm",
                alarm_name=f"{self._prefix}-jenkins-cpu",
                metric=jenkins_cpu,
                threshold=80,
                evaluation_periods=3,
                alarm_description="Jenkins service CPU utilization is high",
            ),
            cloudwatch.Alarm(
                self,
                "JenkinsMemoryAlarm",
                alarm_name=f"{self._prefix}-jenkins-memory",
                metric=jenkins_memory,
                threshold=85,
                evaluation_periods=3,
                alarm_description="Jenkins service memory utilization is high",
            ),
            cloudwatch.Alarm(
                self,
                "DatabaseCpuAlarm",
                alarm_name=f"{self._prefix}-database-cpu",
                metric=database_cpu,
                threshold=80,
                evaluation_periods=3,
                alarm_description="Database CPU utilization is high",
            ),
            cloudwatch.Alarm(
                self,
                "DatabaseStorageAlarm",
                alarm_name=f"{self._prefix}-database-storage",
                metric=database_free_storage,
                threshold=2 * 1024 ** 3,
                evaluation_periods=1,
                comparison_operator=cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD,
                alarm_description="Database free storage is below 2 GiB",
            ),
            cloudwatch.Alarm(
                self,
                "LoadBalancer5xxAlarm",
                alarm_name=f"{self._prefix}-alb-5xx",
                metric=elb_5xx,
                threshold=10,
                evaluation_periods=1,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
                alarm_description="Load balancer is returning 5xx responses",
            ),
        ]
        for alarm in alarms:
            alarm.add_alarm_action(cw_actions.SnsAction(alarm_topic))

        dashboard = cloudwatch.Dashboard(
            self,
            "Dashboard",
            dashboard_name=f"{self._prefix}-dashboard",
        )
        dashboard.add_widgets(
            cloudwatch.GraphWidget(title="Jenkins service", left=[jenkins_cpu, jenkins_memory]),
            cloudwatch.GraphWidget(
                title="Database",
                left=[database_cpu],
                right=[database_free_storage],
            ),
            cloudwatch.GraphWidget(
                title="Load balancer",
                left=[self.load_balancer.metrics.request_count()],
                right=[elb_5xx],
            ),
        )
        dashboard.add_widgets(cloudwatch.AlarmStatusWidget(title="Alarms", alarms=alarms))

        return alarm_topic

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs for the stack resources."""
        outputs = {
            "VpcId": (self.vpc.vpc_id, "VPC ID"),
            "ClusterName": (self.cluster.cluster_name, "ECS cluster name"),
            "JenkinsUrl": (self.props.jenkins_url, "Jenkins URL"),
            "GitHubWebhookUrl": (
                f"{self.props.jenkins_url}/github-webhook/",
                "Payload URL to configure on the GitHub repository webhook",
            ),
            "LoadBalancerDns": (
                self.load_balancer.load_balancer_dns_name,
                "Load balancer DNS name, target of the domain's DNS record",
            ),
            "DatabaseEndpoint": (
                self.database.db_instance_endpoint_address,
                "PostgreSQL database endpoint",
            ),
            "DatabaseSecretArn": (
                self.database_secret.secret_arn,
                "ARN of the secret containing the database credentials",
            ),
            "GitHubSecretArn": (
                self.github_secret.secret_arn,
                "ARN of the secret holding the GitHub token and webhook secret",
            ),
            "GrafanaUrl": (f"{self.props.jenkins_url}/grafana/", "Grafana URL"),
            "EcrRepositoryUri": (
                self.repository.repository_uri,
                "ECR repository URI for images built by Jenkins",
            ),
            "AlarmTopicArn": (self.alarm_topic.topic_arn, "SNS topic notified by alarms"),
        }
        for output_id, (value, description) in outputs.items():
            CfnOutput(
                self,
                output_id,
                value=value,
                description=description,
                export_name=f"{self._prefix}-{output_id}",
            )

    @property
    def _log_retention(self) -> logs.RetentionDays:
        if self.props.is_production:
            return logs.RetentionDays.THREE_MONTHS
        return logs.RetentionDays.ONE_WEEK


def _cidr_mask(cidrs: Sequence[str]) -> int:
    """Shortest prefix length among the CIDRs, so CDK reserves a block large enough for each subnet."""
    return min(ipaddress.IPv4Network(cidr).prefixlen for cidr in cidrs)


def _pin_subnet_cidrs(subnets: Sequence[ec2.ISubnet], cidrs: Sequence[str]) -> None:
    """Override the CIDR block CDK allocated for each subnet, in AZ order."""
    for subnet, cidr in zip(subnets, cidrs):
        cfn_subnet = subnet.node.default_child
        cfn_subnet.cidr_block = cidr
