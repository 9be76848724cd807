"""Environment stacks of the app: which config, secrets and suppressions feed each one."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import aws_cdk as cdk
from constructs import Construct

from ecs_jenkins_github.ecs_jenkins_github_stack import (
    EcsJenkinsGithubProps,
    EcsJenkinsGithubStack,
)
from ecs_jenkins_github.environment_config import (
    DEV_CONFIG,
    DR_CONFIG,
    PROD_CONFIG,
    EnvironmentConfig,
)
from ecs_jenkins_github.errors import ConfigurationError
from ecs_jenkins_github.nag_suppressions import apply_stack_suppressions
from ecs_jenkins_github.settings import (
    DEFAULT_ENV_FILE,
    EnvironmentSecrets,
    load_environment_secrets,
)

logger = logging.getLogger(__name__)

PROJECT_NAME = "ecs-jenkins"


@dataclass(frozen=True)
class EnvironmentDeployment:
    """One environment stack of the app.

    Attributes:
        construct_id: Stack id in the CDK app
        config: Configuration record of the environment
        secret_prefix: Prefix of the environment variables holding its secrets
        db_name: Name of the database created in the stack
        description: CloudFormation stack description
    """

    construct_id: str
    config: EnvironmentConfig
    secret_prefix: str
    db_name: str
    description: str

    @property
    def environment(self) -> str:
        return self.config.environment


DEPLOYMENTS = (
    EnvironmentDeployment(
        construct_id="EcsJenkinsGithubDevStack",
        config=DEV_CONFIG,
        secret_prefix="",
        db_name="devappdb",
        description="ECS Jenkins with GitHub integration - Dev Environment",
    ),
    EnvironmentDeployment(
        construct_id="EcsJenkinsGithubProdStack",
        config=PROD_CONFIG,
        secret_prefix="PROD_",
        db_name="prodappdb",
        description="ECS Jenkins with GitHub integration - Production Environment",
    ),
    EnvironmentDeployment(
        construct_id="EcsJenkinsGithubDrStack",
        config=DR_CONFIG,
        secret_prefix="DR_",
        db_name="drappdb",
        description="ECS Jenkins with GitHub integration - DR Environment (Pilot Light)",
    ),
)


def selected_deployments(
    names: Optional[Union[str, Iterable[str]]] = None,
) -> List[EnvironmentDeployment]:
    """Pick the deployments to synthesize.

    Args:
        names: Environment names, either an iterable or a comma separated
            string such as ``"dev,dr"``. All deployments when empty.

    Returns:
        The matching deployments in dev, prod, dr order

    Raises:
        ConfigurationError: If a name matches no deployment
    """
    if not names:
        return list(DEPLOYMENTS)
    if isinstance(names, str):
        names = names.split(",")
    wanted = {name.strip().lower() for name in names if name.strip()}
    known = {deployment.environment for deployment in DEPLOYMENTS}
    unknown = sorted(wanted - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown environments: {', '.join(unknown)} (expected {', '.join(sorted(known))})"
        )
    return [deployment for deployment in DEPLOYMENTS if deployment.environment in wanted]


def build_stack_props(
    deployment: EnvironmentDeployment,
    secrets: EnvironmentSecrets,
) -> EcsJenkinsGithubProps:
    """Thread one environment's configuration and secrets into stack props."""
    config = deployment.config
    return EcsJenkinsGithubProps(
        aws_region=config.aws_region,
        vpc_cidr=config.vpc_cidr,
        public_subnet_cidrs=config.public_subnet_cidrs,
        private_subnet_cidrs=config.private_subnet_cidrs,
        database_subnet_cidrs=config.database_subnet_cidrs,
        availability_zones=config.availability_zones,
        environment=config.environment,
        project_name=PROJECT_NAME,
        container_port=config.container_port,
        key_name=config.key_name,
        jenkins_instance_type=config.jenkins_instance_type,
        jenkins_role_name=config.jenkins_role_name,
        db_username=secrets.db_username,
        db_password=secrets.db_password.get_secret_value(),
        db_name=deployment.db_name,
        grafana_admin_password=secrets.grafana_admin_password.get_secret_value(),
        domain_name=config.domain_name,
        ec2_instance_type=config.instance_type,
        db_instance_type=config.db_instance_type,
        min_instance_count=config.min_instance_count,
        max_instance_count=config.max_instance_count,
        desired_instance_count=config.desired_instance_count,
        use_spot_instances=config.use_spot_instances,
        spot_price=config.spot_price,
        blocked_ip_addresses=config.normalized_blocked_ip_addresses,
        max_request_size=config.max_request_size,
        request_limit=config.request_limit,
        enable_security_hub=config.enable_security_hub,
        resource_prefix=config.resource_prefix(PROJECT_NAME),
        is_production=config.is_production,
        nat_gateways=config.nat_gateways,
    )


def create_environment_stack(
    scope: Construct,
    deployment: EnvironmentDeployment,
    account: Optional[str] = None,
    env_file: Optional[Union[str, Path]] = DEFAULT_ENV_FILE,
) -> EcsJenkinsGithubStack:
    """Create one environment stack and register its nag suppressions.

    Args:
        scope: The CDK app
        deployment: The environment to create
        account: Target AWS account, environment-agnostic when omitted
        env_file: ``.env`` file secrets are read from

    Returns:
        EcsJenkinsGithubStack: The created stack

    Raises:
        MissingSecretError: If the environment's secrets are not set
    """
    config = deployment.config
    secrets = load_environment_secrets(config.environment, deployment.secret_prefix, env_file)

    stack = EcsJenkinsGithubStack(
        scope,
        deployment.construct_id,
        props=build_stack_props(deployment, secrets),
        env=cdk.Environment(account=account, region=config.aws_region),
        description=deployment.description,
        tags=dict(config.tags),
    )
    apply_stack_suppressions(stack, config.environment)

    logger.info(
        f"Created {deployment.construct_id} ({config.environment}) in {config.aws_region}"
    )
    return stack


def create_environment_stacks(
    scope: Construct,
    deployments: Sequence[EnvironmentDeployment] = DEPLOYMENTS,
    account: Optional[str] = None,
    env_file: Optional[Union[str, Path]] = DEFAULT_ENV_FILE,
) -> List[EcsJenkinsGithubStack]:
    """Create the stacks of every given deployment."""
    return [
        create_environment_stack(scope, deployment, account=account, env_file=env_file)
        for deployment in deployments
    ]
