"""WAFv2 rule definitions for the Jenkins load balancer web ACL.

Rules are evaluated in priority order: explicitly blocked addresses first,
then the request body size limit, the per-IP rate limit and finally the
AWS managed rule groups covering common OWASP findings.
"""
from typing import List, Optional

from aws_cdk import aws_wafv2 as wafv2

MANAGED_RULE_GROUPS = (
    "AWSManagedRulesCommonRuleSet",
    "AWSManagedRulesKnownBadInputsRuleSet",
    "AWSManagedRulesSQLiRuleSet",
)


def visibility_config(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        metric_name=metric_name,
        sampled_requests_enabled=True,
    )


def blocked_ip_rule(priority: int, ip_set_arn: str) -> wafv2.CfnWebACL.RuleProperty:
    """Block every request whose source address is in the IP set."""
    return wafv2.CfnWebACL.RuleProperty(
        name="BlockedIpAddresses",
        priority=priority,
        action=wafv2.CfnWebACL.RuleActionProperty(block={}),
        statement=wafv2.CfnWebACL.StatementProperty(
            ip_set_reference_statement=wafv2.CfnWebACL.IPSetReferenceStatementProperty(
                arn=ip_set_arn,
            ),
        ),
        visibility_config=visibility_config("BlockedIpAddresses"),
    )


def request_size_rule(priority: int, max_request_size: int) -> wafv2.CfnWebACL.RuleProperty:
    """Block requests whose body is larger than ``max_request_size`` bytes.

    Bodies beyond the inspection limit are treated as matching, so oversized
    uploads are blocked instead of slipping through uninspected.
    """
    return wafv2.CfnWebACL.RuleProperty(
        name="MaxRequestSize",
        priority=priority,
        action=wafv2.CfnWebACL.RuleActionProperty(block={}),
        statement=wafv2.CfnWebACL.StatementProperty(
            size_constraint_statement=wafv2.CfnWebACL.SizeConstraintStatementProperty(
                comparison_operator="GT",
                size=max_request_size,
                field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(
                    body=wafv2.CfnWebACL.BodyProperty(oversize_handling="MATCH"),
                ),
                text_transformations=[
                    wafv2.CfnWebACL.TextTransformationProperty(priority=0, type="NONE"),
                ],
            ),
        ),
        visibility_config=visibility_config("MaxRequestSize"),
    )


def rate_limit_rule(priority: int, request_limit: int) -> wafv2.CfnWebACL.RuleProperty:
    """Block client IPs exceeding ``request_limit`` requests per 5 minutes."""
    return wafv2.CfnWebACL.RuleProperty(
        name="RequestRateLimit",
        priority=priority,
        action=wafv2.CfnWebACL.RuleActionProperty(block={}),
        statement=wafv2.CfnWebACL.StatementProperty(
            rate_based_statement=wafv2.CfnWebACL.RateBasedStatementProperty(
                limit=request_limit,
                aggregate_key_type="IP",
            ),
        ),
        visibility_config=visibility_config("RequestRateLimit"),
    )


def managed_rule_group(priority: int, name: str) -> wafv2.CfnWebACL.RuleProperty:
    return wafv2.CfnWebACL.RuleProperty(
        name=name,
        priority=priority,
        override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
        statement=wafv2.CfnWebACL.StatementProperty(
            managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                vendor_name="AWS",
                name=name,
            ),
        ),
        visibility_config=visibility_config(name),
    )


def build_rules(
    *,
    max_request_size: int,
    request_limit: int,
    ip_set_arn: Optional[str] = None,
) -> List[wafv2.CfnWebACL.RuleProperty]:
    """Build the ordered rule list of the web ACL.

    Args:
        max_request_size: Largest request body in bytes
        request_limit: Requests allowed per client IP per 5 minute window
        ip_set_arn: ARN of the blocked addresses IP set, omitted when nothing is blocked

    Returns:
        List of rules with consecutive priorities starting at 0
    """
    rules: List[wafv2.CfnWebACL.RuleProperty] = []
    if ip_set_arn:
        rules.append(blocked_ip_rule(len(rules), ip_set_arn))
    rules.append(request_size_rule(len(rules), max_request_size))
    rules.append(rate_limit_rule(len(rules), request_limit))
    for name in MANAGED_RULE_GROUPS:
        rules.append(managed_rule_group(len(rules), name))
    return rules
