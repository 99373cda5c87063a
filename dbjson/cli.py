# dbjson/cli.py

import argparse
import importlib.util
import logging
import sys
from importlib.metadata import PackageNotFoundError, distributions, requires
from pathlib import Path
from typing import Optional

from . import config
from .database import get_all_drivers
from .defaults import settings
from .documents import SourceDocument
from .jobs import build_job
from .logging_utils import errors_logged, setup_logging
from .writers import writer_for

logger = logging.getLogger(__name__)


def _name_cleanup(name):
    """Cleanup module names for search and display"""
    return name.lower().replace('-', '_')


def _get_optional_deps(extra_name='recommended'):
    """Optional dependencies declared for an extra of the dbjson distribution."""
    try:
        reqs = requires('dbjson') or []
    except PackageNotFoundError:
        return []
    deps = []
    # requirements look like: 'keyring>=23; extra == "recommended"'
    for req in reqs:
        req = req.replace("'", '"')
        if f'extra == "{extra_name}"' in req:
            pkg = req.split(';')[0].strip()
            deps.append(pkg.split('>=')[0].split('==')[0].split('<')[0].strip())
    return deps


def _is_installed(pkg: str) -> bool:
    pkg = _name_cleanup(pkg)
    return (
        importlib.util.find_spec(pkg) is not None
        or pkg in sys.modules
        or pkg in {_name_cleanup(d.metadata['Name']) for d in distributions()}
    )


def checkup(config_file: Optional[str] = None) -> int:
    """Report optional dependencies, database drivers and config health."""
    installed = {_name_cleanup(d.metadata['Name']): d.version for d in distributions()}

    print(f"{'Package':<20} {'Status':<8} {'Version'}")
    print("-" * 40)
    for dep in _get_optional_deps('recommended'):
        status = "✓" if _is_installed(dep) else "✗"
        print(f"{dep:<20} {status:<8} {installed.get(_name_cleanup(dep), '-')}")

    print("\nDB Drivers           Priority* Status   Version")
    print("-" * 56)
    by_type = {}
    for name, info in get_all_drivers().items():
        by_type.setdefault(info['database_type'], []).append((info['priority'], name, info))

    for db_type in sorted(by_type):
        print(f"{db_type}")
        for pri, name, info in sorted(by_type[db_type], key=lambda x: x[0]):
            module_name = info.get('module', name)
            try:
                status = "✓" if importlib.util.find_spec(module_name) else "✗"
            except ModuleNotFoundError:
                status = "✗"
            version = installed.get(_name_cleanup(module_name), '--')
            print(f"{'  ' + name:<20} {pri:<9} {status:<8} {version}")

    print("\n* Lower priority = preferred")

    print("\nConfig Health")
    print("-" * 40)
    results = config.diagnose_config(config_file)
    for status, msg in results:
        print(f"{status} {msg}")
    return 1 if any(status == '✗' for status, _ in results) else 0


def run_job(job_name: str, source: Optional[str] = None, config_file: Optional[str] = None,
            output: Optional[str] = None, output_format: Optional[str] = None,
            level: Optional[str] = None) -> int:
    """
    Run a job defined in the ``jobs:`` section of the config file.

    Output goes to ``output`` (or the job's ``output`` entry, or
    ``{output_dir}/{job_name}``) in ``json`` or ``ndjson`` format.

    Returns:
        Process exit code: 0 on success, 1 when the job failed or errors were logged
    """
    if config_file:
        config.set_config_file(config_file)
    job_config = config.get_job_config(job_name)
    setup_logging(job_name, level=level)

    output = output or job_config.get('output') or str(Path(settings.get('output_dir', './output')) / job_name)
    output_format = output_format or job_config.get('format', 'json')
    job = build_job(job_name, job_config, config.connect)
    source_doc = SourceDocument.from_file(source) if source else None

    writer = writer_for(output, output_format, prefix=job_config.get('prefix', job_name))
    try:
        result = job.run(writer, source_doc)
    except Exception as e:
        print(f"Job '{job_name}' failed: {e}", file=sys.stderr)
        return 1
    finally:
        writer.close()

    print(f"Job '{job_name}' wrote {result.row_count} rows in {result.batch_count} batches to {output}")
    error_log = errors_logged()
    if error_log:
        print(f"Errors were logged, see {error_log}", file=sys.stderr)
        return 1
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog='dbjson', description='Extract database rows as JSON documents')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # run
    run_parser = subparsers.add_parser('run', help='Run a job from the config file')
    run_parser.add_argument('job', help='Job name from the jobs section of the config file')
    run_parser.add_argument('--source', help='JSON file that triggers the job (ids, merge target, fetch.id)')
    run_parser.add_argument('--config', dest='config_file', help='Config file path')
    run_parser.add_argument('--output', help='Output directory (json) or file (ndjson)')
    run_parser.add_argument('--format', dest='output_format', choices=['json', 'ndjson'],
                            help='Output format, json by default')
    run_parser.add_argument('--log-level', dest='level', help='DEBUG, INFO, WARNING or ERROR')

    # checkup
    checkup_parser = subparsers.add_parser('checkup', help='Check for dependencies and configuration issues')
    checkup_parser.add_argument('--config', dest='config_file', help='Config file path')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-config
    encrypt_parser = subparsers.add_parser('encrypt-config', help='Encrypt passwords in config file')
    encrypt_parser.add_argument('config_file', help='Config file path')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt')

    args = parser.parse_args(argv)

    try:
        if args.command == 'run':
            return run_job(args.job, args.source, args.config_file, args.output, args.output_format, args.level)
        elif args.command == 'checkup':
            return checkup(args.config_file)
        elif args.command == 'generate-key':
            print(config.generate_encryption_key())
        elif args.command == 'store-key':
            config.store_key(args.key, force=args.force)
        elif args.command == 'encrypt-config':
            config.encrypt_config_file(args.config_file)
        elif args.command == 'encrypt-password':
            config.encrypt_password(args.password)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
