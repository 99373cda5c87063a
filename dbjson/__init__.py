# dbjson/__init__.py
"""
dbjson - stream database query results into JSON documents

- Batches cursor rows into JSON array documents (or single objects)
- Merges query rows into an existing JSON document by join key
- Drives a query with chunks of ids read from a second query
- Postgres, Oracle and generic (any DB-API driver) id substitution
- YAML-based configuration with password encryption and named jobs

Basic usage::

    import dbjson
    from dbjson.jobs import QueryToJson
    from dbjson.writers import JSONFileWriter

    job = QueryToJson(lambda: dbjson.connect('warehouse'), "select * from orders", batch_size=500)
    job.run(JSONFileWriter('./out'))

Or from the command line, with the job defined in dbjson.yml::

    dbjson run customer_orders --source customers.json
"""

__version__ = '0.1.0'

from .database import Database
from .config import connect, set_config_file
from .cursors import Cursor, DictCursor
from .documents import LineageRecorder, OutputDocument, SourceDocument
from .logging_utils import setup_logging, cleanup_old_logs, errors_logged
from . import extract
from . import writers

__all__ = [
    'connect',
    'set_config_file',
    'Database',
    'Cursor',
    'DictCursor',
    'SourceDocument',
    'OutputDocument',
    'LineageRecorder',
    'extract',
    'writers',
    'setup_logging',
    'cleanup_old_logs',
    'errors_logged',
]
