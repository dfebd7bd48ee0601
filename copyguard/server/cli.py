"""
Command-line interface for the CopyGuard server.
"""

import argparse
import logging
import sys


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="copyguard-server",
        description="CopyGuard Server - Compliance gate and approval workflow for marketing copy",
    )

    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: sqlite:///./copyguard.db)",
    )
    parser.add_argument(
        "--api-keys",
        default=None,
        help="Comma-separated list of API keys (default: dev-user-key)",
    )
    parser.add_argument(
        "--step-template",
        default=None,
        help="YAML file with the approval step chain (default: Manager -> Legal -> Executive)",
    )
    parser.add_argument(
        "--retrieval-backend",
        default=None,
        choices=["none", "tfidf"],
        help="Policy document index (default: none)",
    )
    parser.add_argument(
        "--seed-demo-rules",
        action="store_true",
        help="Insert the demo policy rules into an empty rule table",
    )
    parser.add_argument(
        "--require-identity",
        action="store_true",
        help="Reject approve/reject calls without an acting user",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from .app import CopyGuardServer
    from .config import ServerConfig

    env = ServerConfig.from_env()
    api_keys = None
    if args.api_keys:
        api_keys = set(args.api_keys.split(","))

    print(f"""
CopyGuard Server v0.1.0
  Host: {args.host}
  Port: {args.port}
  Database: {args.database_url or env.database_url}

API Documentation: http://{args.host}:{args.port}/docs

Press Ctrl+C to stop the server.
""")

    try:
        server = CopyGuardServer(
            host=args.host,
            port=args.port,
            database_url=args.database_url or env.database_url,
            api_keys=api_keys or env.api_keys,
            debug=args.debug or env.debug,
            log_level=args.log_level,
            step_template_path=args.step_template or env.step_template_path,
            retrieval_backend=args.retrieval_backend or env.retrieval_backend,
            seed_demo_rules=args.seed_demo_rules or env.seed_demo_rules,
            require_identity=args.require_identity or env.require_identity,
            retain_workflow_history=env.retain_workflow_history,
            llm_model=env.llm_model,
            llm_api_key=env.llm_api_key,
            evaluator_timeout_seconds=env.evaluator_timeout_seconds,
            retrieval_top_k=env.retrieval_top_k,
            fallback_severity=env.fallback_severity,
        )
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
