import sys
import json
import argparse
from database.connection import SupabaseConnection
from src.utils.constants import API_HOST, API_PORT
from src.utils.exceptions import PipelineError
from src.utils.logger import get_logger
from src.processing.models.review_kinds import REVIEW_KINDS
from src.processing.pipeline.services import PipelineServices

logger = get_logger("pipeline cli")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Maintain review embeddings and rollups for course and company reviews"
    )

    parser.add_argument(
        '--runner',
        help='Identity label recorded on claimed jobs (defaults to BATCH_RUNNER)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    embeddings = subparsers.add_parser('embeddings', help='Run one embedding job pass')
    embeddings.add_argument('--kind', choices=sorted(REVIEW_KINDS), required=True)

    rollups = subparsers.add_parser('rollups', help='Run one dirty rollup pass')
    rollups.add_argument('--kind', choices=sorted(REVIEW_KINDS), required=True)

    rebuild = subparsers.add_parser('full-rebuild', help='Requeue everything and run to quiescence')
    rebuild.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars while paging reviews and rollup keys'
    )

    subparsers.add_parser('init-schema', help='Create pipeline tables and indexes')

    serve = subparsers.add_parser('serve', help='Start the batch trigger API')
    serve.add_argument('--host', default=API_HOST)
    serve.add_argument('--port', type=int, default=API_PORT)

    return parser.parse_args(argv)


def run_command(args, services=None):
    if args.command == 'init-schema':
        db = SupabaseConnection()
        try:
            return {"ok": db.initialize_schema()}
        finally:
            db.close()

    services = services or PipelineServices.from_env()

    if args.command == 'embeddings':
        return services.pipeline(args.kind).embedding_runner.run(args.runner).to_dict()
    if args.command == 'rollups':
        return services.pipeline(args.kind).rollup_runner.run(args.runner).to_dict()
    if args.command == 'full-rebuild':
        orchestrator = services.rebuild_orchestrator(show_progress=not args.no_progress)
        return orchestrator.run(args.runner).to_dict()

    raise ValueError(f"Unknown command {args.command}")


def main(argv=None):
    args = parse_args(argv)

    if args.command == 'serve':
        from src.processing.api import serve
        serve(host=args.host, port=args.port)
        return 0

    try:
        result = run_command(args)
    except PipelineError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False))
        return 1

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())


# terminal command for run:
# python -m src.processing.main embeddings --kind course
