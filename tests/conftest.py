from __future__ import annotations

import os
import tempfile

# Runtime directories are resolved at import time; keep tests out of the project tree.
os.environ.setdefault("SUBTITLER_RUNTIME_DIR", tempfile.mkdtemp(prefix="subtitler-tests-"))
if os.environ.get("RUN_E2E") != "1":
    os.environ.pop("OPENAI_API_KEY", None)
