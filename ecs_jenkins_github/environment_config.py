"""Per-environment configuration records for the Jenkins stacks.

Each record is defined once at import time and validated on construction,
so a malformed CIDR or an inverted scaling range fails before any construct
is created.
"""
import ipaddress
import itertools
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from ecs_jenkins_github.errors import ConfigurationError

ENVIRONMENTS = ("dev", "prod", "dr")

# Regional WAF web ACLs associated with a load balancer inspect at most 8 KB of the body.
MAX_INSPECTABLE_BODY_SIZE = 8192

# Lowest limit accepted by a WAF rate-based rule.
MIN_RATE_LIMIT = 100


@dataclass(frozen=True)
class EnvironmentConfig:
    """Configuration of one deployment environment.

    Attributes:
        environment: Environment name (dev, prod or dr)
        aws_region: Region the stack is deployed to
        vpc_cidr: CIDR block of the VPC
        public_subnet_cidrs: One public subnet CIDR per availability zone
        private_subnet_cidrs: One private subnet CIDR per availability zone
        database_subnet_cidrs: One isolated database subnet CIDR per availability zone
        availability_zones: Availability zones, in subnet order
        container_port: Port the Jenkins container listens on
        key_name: EC2 key pair attached to cluster instances
        jenkins_instance_type: Instance type of the Jenkins controller capacity
        jenkins_role_name: Name of the Jenkins task IAM role
        domain_name: Public domain name of the Jenkins endpoint
        instance_type: Instance type of the general ECS capacity
        db_instance_type: RDS instance type
        min_instance_count: Minimum size of the general capacity
        max_instance_count: Maximum size of the general capacity
        desired_instance_count: Desired size of the general capacity
        use_spot_instances: Request spot capacity for the general instances
        spot_price: Maximum hourly spot price in USD
        blocked_ip_addresses: IPv4 addresses or CIDRs blocked by the web ACL
        max_request_size: Largest request body in bytes allowed through the web ACL
        request_limit: Requests per client IP per 5 minute window
        enable_security_hub: Enable AWS Security Hub
        tags: Tags applied to every resource in the stack
    """

    environment: str
    aws_region: str
    vpc_cidr: str
    public_subnet_cidrs: Tuple[str, ...]
    private_subnet_cidrs: Tuple[str, ...]
    database_subnet_cidrs: Tuple[str, ...]
    availability_zones: Tuple[str, ...]
    container_port: int
    key_name: str
    jenkins_instance_type: str
    jenkins_role_name: str
    domain_name: str
    instance_type: str
    db_instance_type: str
    min_instance_count: int
    max_instance_count: int
    desired_instance_count: int
    use_spot_instances: bool
    spot_price: Optional[str]
    blocked_ip_addresses: Tuple[str, ...]
    max_request_size: int
    request_limit: int
    enable_security_hub: bool
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"Unknown environment '{self.environment}', expected one of {', '.join(ENVIRONMENTS)}"
            )
        self._validate_network()
        self._validate_capacity()
        self._validate_security()
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        if not 1 <= self.container_port <= 65535:
            raise ConfigurationError(
                f"[{self.environment}] container_port must be between 1 and 65535"
            )

    def _validate_network(self) -> None:
        vpc_network = _parse_network(self.environment, "vpc_cidr", self.vpc_cidr)

        if len(self.availability_zones) < 2:
            raise ConfigurationError(
                f"[{self.environment}] at least two availability zones are required"
            )
        for zone in self.availability_zones:
            if not zone.startswith(self.aws_region) or len(zone) != len(self.aws_region) + 1:
                raise ConfigurationError(
                    f"[{self.environment}] availability zone '{zone}' is not in region {self.aws_region}"
                )

        subnets = []
        for tier, cidrs in self.subnet_tiers.items():
            if len(cidrs) != len(self.availability_zones):
                raise ConfigurationError(
                    f"[{self.environment}] {tier} needs one CIDR per availability zone "
                    f"({len(self.availability_zones)}), got {len(cidrs)}"
                )
            for cidr in cidrs:
                subnet = _parse_network(self.environment, tier, cidr)
                if not subnet.subnet_of(vpc_network):
                    raise ConfigurationError(
                        f"[{self.environment}] subnet {cidr} is outside VPC {self.vpc_cidr}"
                    )
                subnets.append(subnet)

        for first, second in itertools.combinations(subnets, 2):
            if first.overlaps(second):
                raise ConfigurationError(
                    f"[{self.environment}] subnets {first} and {second} overlap"
                )

    def _validate_capacity(self) -> None:
        if self.min_instance_count < 0:
            raise ConfigurationError(
                f"[{self.environment}] min_instance_count must not be negative"
            )
        if self.max_instance_count < 1:
            raise ConfigurationError(
                f"[{self.environment}] max_instance_count must be at least 1"
            )
        if not self.min_instance_count <= self.desired_instance_count <= self.max_instance_count:
            raise ConfigurationError(
                f"[{self.environment}] instance counts must satisfy min <= desired <= max, got "
                f"{self.min_instance_count} <= {self.desired_instance_count} <= {self.max_instance_count}"
            )
        if self.use_spot_instances:
            try:
                price = Decimal(self.spot_price or "")
            except InvalidOperation:
                raise ConfigurationError(
                    f"[{self.environment}] spot_price '{self.spot_price}' is not a decimal number"
                ) from None
            if not price.is_finite() or price <= 0:
                raise ConfigurationError(
                    f"[{self.environment}] spot_price must be positive when spot instances are enabled"
                )

    def _validate_security(self) -> None:
        for address in self.blocked_ip_addresses:
            try:
                ipaddress.IPv4Network(address, strict=False)
            except ValueError:
                raise ConfigurationError(
                    f"[{self.environment}] blocked address '{address}' is not an IPv4 address or CIDR"
                ) from None
        if not 0 < self.max_request_size <= MAX_INSPECTABLE_BODY_SIZE:
            raise ConfigurationError(
                f"[{self.environment}] max_request_size must be between 1 and {MAX_INSPECTABLE_BODY_SIZE} bytes"
            )
        if self.request_limit < MIN_RATE_LIMIT:
            raise ConfigurationError(
                f"[{self.environment}] request_limit must be at least {MIN_RATE_LIMIT}"
            )

    @property
    def subnet_tiers(self) -> Dict[str, Tuple[str, ...]]:
        """Subnet CIDRs keyed by tier name."""
        return {
            "public_subnet_cidrs": self.public_subnet_cidrs,
            "private_subnet_cidrs": self.private_subnet_cidrs,
            "database_subnet_cidrs": self.database_subnet_cidrs,
        }

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def nat_gateways(self) -> int:
        """One NAT gateway per AZ in production, a single shared one elsewhere."""
        return len(self.availability_zones) if self.is_production else 1

    @property
    def normalized_blocked_ip_addresses(self) -> Tuple[str, ...]:
        """Blocked addresses in CIDR notation, bare addresses become /32."""
        return tuple(
            str(ipaddress.IPv4Network(address, strict=False))
            for address in self.blocked_ip_addresses
        )

    def resource_prefix(self, project_name: str) -> str:
        return f"{project_name}-{self.environment}"


def _parse_network(environment: str, name: str, cidr: str) -> ipaddress.IPv4Network:
    try:
        return ipaddress.IPv4Network(cidr)
    except ValueError as e:
        raise ConfigurationError(f"[{environment}] invalid CIDR '{cidr}' in {name}: {e}") from None


DEV_CONFIG = EnvironmentConfig(
    environment="dev",
    aws_region="us-east-1",
    vpc_cidr="10.0.0.0/16",
    public_subnet_cidrs=("10.0.1.0/24", "10.0.2.0/24"),
    private_subnet_cidrs=("10.0.11.0/24", "10.0.12.0/24"),
    database_subnet_cidrs=("10.0.21.0/24", "10.0.22.0/24"),
    availability_zones=("us-east-1a", "us-east-1b"),
    container_port=8080,
    key_name="ecs-jenkins-dev-key",
    jenkins_instance_type="t3.medium",
    jenkins_role_name="ecs-jenkins-dev-jenkins-role",
    domain_name="jenkins-dev.example.com",
    instance_type="t3.medium",
    db_instance_type="t3.micro",
    min_instance_count=1,
    max_instance_count=3,
    desired_instance_count=1,
    use_spot_instances=True,
    spot_price="0.0416",
    blocked_ip_addresses=(),
    max_request_size=8192,
    request_limit=2000,
    enable_security_hub=False,
    tags={
        "Project": "ecs-jenkins",
        "Environment": "dev",
        "ManagedBy": "CDK",
    },
)

PROD_CONFIG = EnvironmentConfig(
    environment="prod",
    aws_region="us-east-1",
    vpc_cidr="10.1.0.0/16",
    public_subnet_cidrs=("10.1.1.0/24", "10.1.2.0/24", "10.1.3.0/24"),
    private_subnet_cidrs=("10.1.11.0/24", "10.1.12.0/24", "10.1.13.0/24"),
    database_subnet_cidrs=("10.1.21.0/24", "10.1.22.0/24", "10.1.23.0/24"),
    availability_zones=("us-east-1a", "us-east-1b", "us-east-1c"),
    container_port=8080,
    key_name="ecs-jenkins-prod-key",
    jenkins_instance_type="m5.large",
    jenkins_role_name="ecs-jenkins-prod-jenkins-role",
    domain_name="jenkins.example.com",
    instance_type="m5.large",
    db_instance_type="m5.large",
    min_instance_count=2,
    max_instance_count=6,
    desired_instance_count=2,
    use_spot_instances=False,
    spot_price=None,
    blocked_ip_addresses=("192.0.2.0/24", "198.51.100.23"),
    max_request_size=8192,
    request_limit=1000,
    enable_security_hub=True,
    tags={
        "Project": "ecs-jenkins",
        "Environment": "prod",
        "ManagedBy": "CDK",
    },
)

# Pilot light: minimal capacity in a second region, scaled up on failover.
DR_CONFIG = EnvironmentConfig(
    environment="dr",
    aws_region="us-west-2",
    vpc_cidr="10.2.0.0/16",
    public_subnet_cidrs=("10.2.1.0/24", "10.2.2.0/24"),
    private_subnet_cidrs=("10.2.11.0/24", "10.2.12.0/24"),
    database_subnet_cidrs=("10.2.21.0/24", "10.2.22.0/24"),
    availability_zones=("us-west-2a", "us-west-2b"),
    container_port=8080,
    key_name="ecs-jenkins-dr-key",
    jenkins_instance_type="t3.small",
    jenkins_role_name="ecs-jenkins-dr-jenkins-role",
    domain_name="jenkins-dr.example.com",
    instance_type="t3.small",
    db_instance_type="t3.micro",
    min_instance_count=1,
    max_instance_count=6,
    desired_instance_count=1,
    use_spot_instances=False,
    spot_price=None,
    blocked_ip_addresses=("192.0.2.0/24", "198.51.100.23"),
    max_request_size=8192,
    request_limit=1000,
    enable_security_hub=True,
    tags={
        "Project": "ecs-jenkins",
        "Environment": "dr",
        "ManagedBy": "CDK",
    },
)
