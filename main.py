#!/usr/bin/env python3
"""Main entry point for MailPilot.

Commands:
    serve            Run the API gateway
    prune-memories   Delete expired memories (scheduler trigger)
    expire-actions   Mark overdue confirmations expired
    agent-metrics    Print a summary of recent deliberations
    demo             Process one sample email with the scripted provider
"""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone

from mailpilot.common.config import ActionStoreType, Config, MemoryStoreType
from mailpilot.common.exceptions import ConfigurationError, MailPilotException
from mailpilot.common.logging import get_logger

logger = get_logger(__name__)


def _service(config: Config):
    from mailpilot.api.service import InboundProcessingService
    return InboundProcessingService.from_config(config)


def cmd_serve(args, config: Config) -> int:
    import uvicorn

    logger.info(f"MailPilot API starting in {config.environment.value} mode")
    uvicorn.run(
        "mailpilot.api.gateway:app",
        host=args.host or config.api_host,
        port=args.port or config.api_port,
        log_level=config.log_level.value.lower(),
    )
    return 0


def cmd_prune_memories(args, config: Config) -> int:
    if config.memory_store_type == MemoryStoreType.MEMORY:
        raise ConfigurationError(
            "prune-memories needs a shared memory store; set MAILPILOT_MEMORY_STORE=dynamodb"
        )
    service = _service(config)
    try:
        pruned = service.prune_memories()
    finally:
        service.shutdown()
    logger.info(f"Pruned {pruned} expired memories")
    return 0


def cmd_expire_actions(args, config: Config) -> int:
    if config.action_store_type == ActionStoreType.MEMORY:
        raise ConfigurationError(
            "expire-actions needs a shared action store; set MAILPILOT_ACTION_STORE=dynamodb"
        )
    service = _service(config)
    try:
        expired = service.expire_actions()
    finally:
        service.shutdown()
    logger.info(f"Marked {expired} actions expired")
    return 0


def cmd_agent_metrics(args, config: Config) -> int:
    service = _service(config)
    try:
        since = datetime.now(timezone.utc) - timedelta(days=args.days)
        summary = service.metrics.compute(since=since, limit=args.limit)
    finally:
        service.shutdown()

    print("Multi-Agent Metrics")
    print(f"Since: {since.isoformat()}")
    print(f"Deliberations: {summary.deliberations}")
    print(f"Max Rounds: {summary.rounds_max}")
    print(f"Groundedness: {summary.groundedness_pct * 100:.1f}%")
    print(f"Error rate: {summary.error_rate * 100:.1f}%")
    print()
    print("Role Activity")
    for role, activity in summary.roles.items():
        print(
            f"- {role}: count={activity.count}, failures={activity.failures}, "
            f"latency_ms={activity.latency_ms_mean:.0f} (p95 {activity.latency_ms_p95:.0f}), "
            f"tokens={activity.tokens_total}"
        )
    return 0


def cmd_demo(args, config: Config) -> int:
    from mailpilot.api.adapters import LoggingActionExecutor
    from mailpilot.api.service import InboundProcessingService
    from mailpilot.governance.audit import AgentStepLog
    from mailpilot.governance.policies import load_policy_rules
    from mailpilot.orchestration import InboundMessage
    from mailpilot.providers import CapabilityClient, build_demo_provider

    service = InboundProcessingService(
        client=CapabilityClient(build_demo_provider(), AgentStepLog()),
        rules=load_policy_rules(config.policy_file),
        executor=LoggingActionExecutor(),
        base_url=config.public_base_url,
    )
    message = InboundMessage(
        message_id="demo-1",
        subject=args.subject,
        from_email="sam@example.com",
        from_name="Sam",
        text_body=args.body,
        account_id="demo",
    )
    try:
        result = service.process(message)
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        if result.links is not None:
            outcome = service.state_machine.handle(result.links.confirm_url.rsplit("/", 1)[-1])
            print(f"Confirm link -> {outcome.outcome.value} ({outcome.status.value})")
    finally:
        service.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailpilot",
        description="MailPilot - multi-agent deliberation for inbound email",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API gateway")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    prune = subparsers.add_parser("prune-memories", help="Delete expired memories")
    prune.set_defaults(func=cmd_prune_memories)

    expire = subparsers.add_parser("expire-actions", help="Mark overdue confirmations expired")
    expire.set_defaults(func=cmd_expire_actions)

    metrics = subparsers.add_parser("agent-metrics", help="Summarise recent deliberations")
    metrics.add_argument("--days", type=int, default=7)
    metrics.add_argument("--limit", type=int, default=500)
    metrics.set_defaults(func=cmd_agent_metrics)

    demo = subparsers.add_parser("demo", help="Process one sample email")
    demo.add_argument("--subject", default="Can we meet tomorrow?")
    demo.add_argument("--body", default="Let's meet tomorrow at 10 to go over the plan.")
    demo.set_defaults(func=cmd_demo)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = Config()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        return args.func(args, config)
    except MailPilotException as e:
        logger.error(f"{e.code}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
