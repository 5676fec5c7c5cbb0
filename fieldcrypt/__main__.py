"""
Command line interface.

FULL KEY CHANGE WORKFLOW:
=========================

1. GENERATE and register a new key:
   python -m fieldcrypt keys generate
   python -m fieldcrypt keys add key-v2            (material in FIELDCRYPT_KEY_KEY_V2)
   python -m fieldcrypt profiles add v2 --key key-v2

2. UPDATE environment:
   - FIELDCRYPT_PREVIOUS_PROFILE=<old profile>
   - FIELDCRYPT_CURRENT_PROFILE=v2

3. ROTATE (change pass with the old key, then encrypt pass with the new one):
   python -m fieldcrypt rotate
"""
import argparse
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from fieldcrypt.core.config import get_settings
from fieldcrypt.core.crypto.keys import KeyRepository
from fieldcrypt.core.database import connection
from fieldcrypt.core.exceptions import FieldCryptError, InvalidOperationError
from fieldcrypt.core.migration.models import InvocationContext, Operation, PlanOutcome
from fieldcrypt.core.migration.planner import MigrationPlanner
from fieldcrypt.core.migration.services import MigrationServices

logger = logging.getLogger("fieldcrypt")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m fieldcrypt",
        description="Encrypt, decrypt or re-key stored user addresses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--database-url', help='Override FIELDCRYPT_DATABASE_URL')
    sub = parser.add_subparsers(dest='command', required=True)

    migrate = sub.add_parser('migrate', help='Run a migration over all users')
    migrate.add_argument('operation', help='encrypt, decrypt or change')
    migrate.add_argument('--context', default='none', help='none, uninstall or change (decides cleanup)')
    migrate.add_argument('--force-batch', action='store_true', help='Use a batch job even for small tables')
    migrate.add_argument('--no-run', action='store_true', help='Only queue the batch job, run it later with "jobs run"')

    rotate = sub.add_parser('rotate', help='Change pass with the previous key, then encrypt pass with the current key')
    rotate.add_argument('--force-batch', action='store_true')

    jobs = sub.add_parser('jobs', help='Inspect and run batch jobs')
    jobs_sub = jobs.add_subparsers(dest='jobs_command', required=True)
    jobs_sub.add_parser('list', help='List migration jobs')
    jobs_run = jobs_sub.add_parser('run', help='Run (or resume) a job; "all" runs every unfinished job')
    jobs_run.add_argument('job_id')
    jobs_run.add_argument('--max-steps', type=int, default=None, help='Stop after this many pages')
    jobs_status = jobs_sub.add_parser('status', help='Show progress of a job')
    jobs_status.add_argument('job_id')

    keys = sub.add_parser('keys', help='Manage encryption keys')
    keys_sub = keys.add_subparsers(dest='keys_command', required=True)
    keys_sub.add_parser('generate', help='Print new key material')
    keys_sub.add_parser('list', help='List registered keys')
    keys_add = keys_sub.add_parser('add', help='Register a key')
    keys_add.add_argument('name')
    keys_add.add_argument('--env-var', help='Environment variable holding the key material')
    keys_add.add_argument('--value', help='Store the key material in the database instead')
    keys_delete = keys_sub.add_parser('delete', help='Delete a key and the profiles using it')
    keys_delete.add_argument('name')

    profiles = sub.add_parser('profiles', help='Manage encryption profiles')
    profiles_sub = profiles.add_subparsers(dest='profiles_command', required=True)
    profiles_add = profiles_sub.add_parser('add', help='Register a profile')
    profiles_add.add_argument('name')
    profiles_add.add_argument('--key', required=True, help='Name of the key the profile uses')

    sub.add_parser('init-db', help='Create tables (development only, use Alembic in production)')
    return parser


def _print_outcome(outcome: PlanOutcome):
    line = f"{outcome.operation.label}: {outcome.mode.value}"
    if outcome.job_id:
        line += f" (job {outcome.job_id})"
    print(line)


def _run_migrate(args, services: MigrationServices) -> int:
    planner = MigrationPlanner.from_services(services)
    outcome = planner.run(
        args.operation,
        context=args.context,
        force_batch=args.force_batch,
        run_now=not args.no_run,
    )
    _print_outcome(outcome)
    if outcome.finalize_result is not None and not outcome.finalize_result.real_success:
        return 1
    return 0


def _run_rotate(args, services: MigrationServices) -> int:
    if not services.settings.previous_profile:
        print("❌ FIELDCRYPT_PREVIOUS_PROFILE is not set - nothing to rotate from.")
        return 1

    planner = MigrationPlanner.from_services(services)
    change = planner.run(Operation.CHANGE, InvocationContext.CHANGE, args.force_batch, run_now=True)
    _print_outcome(change)
    if change.finalize_result is not None and not change.finalize_result.real_success:
        print("❌ Change pass did not update any user - skipping the encrypt pass.")
        return 1

    encrypt = planner.run(Operation.ENCRYPT, InvocationContext.NONE, args.force_batch, run_now=True)
    _print_outcome(encrypt)
    return 0


def _run_jobs(args, services: MigrationServices) -> int:
    queue = services.queue
    if args.jobs_command == 'list':
        for job in queue.list():
            print(f"{job.id}  {job.operation:<8} {job.context:<9} {job.status:<10} "
                  f"{job.processed_count}/{job.total_count} ({job.completion_fraction:.0%})")
        return 0

    if args.jobs_command == 'run':
        if args.job_id == 'all':
            jobs = queue.run_pending()
        else:
            jobs = [queue.run(args.job_id, max_steps=args.max_steps)]
        for job in jobs:
            print(f"{job.id}: {job.status} {job.processed_count}/{job.total_count}")
        return 0 if all(job.status != 'failed' for job in jobs) else 1

    job = queue.get(args.job_id)
    print(f"Job:       {job.id}")
    print(f"Operation: {job.operation} (context: {job.context})")
    print(f"Status:    {job.status}")
    print(f"Progress:  {job.processed_count}/{job.total_count} ({job.completion_fraction:.0%})")
    print(f"Steps:     {job.steps}")
    if job.last_error:
        print(f"Error:     {job.last_error}")
    return 0


def _run_keys(args, services: MigrationServices) -> int:
    keys = services.keys
    if args.keys_command == 'list':
        for key in keys.list_keys():
            profiles = ', '.join(p.name for p in key.profiles) or '-'
            print(f"{key.name:<20} {key.provider:<7} profiles: {profiles}")
        return 0

    if args.keys_command == 'add':
        key = keys.create_key(args.name, value=args.value, env_var=args.env_var)
        services.db.commit()
        if key.provider == 'env':
            print(f"✅ Key '{key.name}' registered, material read from ${key.value}")
        else:
            print(f"✅ Key '{key.name}' registered")
        return 0

    profiles = keys.delete_key(args.name)
    services.db.commit()
    print(f"✅ Deleted key '{args.name}' and profile(s): {', '.join(profiles) or '-'}")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format=settings.log_format)

    if args.command == 'keys' and args.keys_command == 'generate':
        print(KeyRepository.generate_key())
        return 0

    try:
        connection.init_db(args.database_url)
    except RuntimeError as e:
        print(f"❌ {e}")
        return 1

    if args.command == 'init-db':
        connection.create_tables()
        print("✅ Tables created")
        return 0

    db = next(connection.get_db())
    services = MigrationServices.build(db, settings)
    try:
        if args.command == 'migrate':
            return _run_migrate(args, services)
        if args.command == 'rotate':
            return _run_rotate(args, services)
        if args.command == 'jobs':
            return _run_jobs(args, services)
        if args.command == 'keys':
            return _run_keys(args, services)
        if args.command == 'profiles':
            services.keys.create_profile(args.name, args.key)
            db.commit()
            print(f"✅ Profile '{args.name}' registered")
            return 0
    except InvalidOperationError as e:
        print(f"❌ {e}")
        return 2
    except FieldCryptError as e:
        print(f"❌ {e}")
        return 1
    except SQLAlchemyError as e:
        services.db.rollback()
        logger.error(f"Database error: {e}")
        print(f"❌ Database error: {e}")
        return 1
    finally:
        if services.messages.messages:
            print(services.messages.render())
        db.close()

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
