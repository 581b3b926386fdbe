import os
import tempfile

# keep log files out of the working tree; must run before segflow is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="segflow-logs-"))

import pytest

from segflow.types import ExecutionContext


@pytest.fixture
def context():
    return ExecutionContext(execution_id="test0001", pipeline_id="p1", user_id="u1")
