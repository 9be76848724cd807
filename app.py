#!/usr/bin/env python3
"""AWS CDK application entry point for the ECS Jenkins GitHub infrastructure.

Usage:
    # Synthesize dev, prod and DR stacks
    cdk synth

    # Synthesize a subset of environments
    cdk synth -c environments=dev,dr

Secrets are read from environment variables or a .env file:
    DB_USERNAME, DB_PASSWORD, GRAFANA_ADMIN_PASSWORD              (dev)
    PROD_DB_USERNAME, PROD_DB_PASSWORD, PROD_GRAFANA_ADMIN_PASSWORD (prod)
    DR_DB_USERNAME, DR_DB_PASSWORD, DR_GRAFANA_ADMIN_PASSWORD       (dr)
"""
import logging

import aws_cdk as cdk
from cdk_nag import AwsSolutionsChecks

from ecs_jenkins_github.environments import create_environment_stacks, selected_deployments
from ecs_jenkins_github.errors import ConfigurationError
from ecs_jenkins_github.settings import AppSettings

logger = logging.getLogger(__name__)


def main() -> cdk.App:
    settings = AppSettings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = cdk.App()

    # Apply cdk-nag to the entire application
    cdk.Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

    try:
        deployments = selected_deployments(app.node.try_get_context("environments"))
        create_environment_stacks(app, deployments, account=settings.cdk_default_account)
    except ConfigurationError as e:
        logger.error(f"Invalid deployment configuration: {e}")
        raise

    app.synth()
    return app


if __name__ == "__main__":
    main()
