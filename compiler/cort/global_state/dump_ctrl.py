import os
import sys
from typing import Optional


class DumpControl(object):
    """Contains policy for whether the generated source of a compiled function should be written out for inspection."""
    DUMP_DIR_ENV = "CORT_DUMP_DIR"

    def __init__(self) -> None:
        self.dump_dir: Optional[str] = None
        dump_dir_str = os.environ.get(self.DUMP_DIR_ENV)
        if dump_dir_str:
            if os.path.isdir(dump_dir_str):
                self.dump_dir = dump_dir_str
                print(f"Generated code will be dumped to: {dump_dir_str}", file=sys.stderr)
            else:
                print(f"Environment {self.DUMP_DIR_ENV} not a directory: {dump_dir_str}", file=sys.stderr)

    def should_dump(self) -> bool:
        return self.dump_dir is not None

    def dump_path(self, module: str, qualname: str) -> str:
        """Returns the file path where the generated source of a function is written."""
        assert self.dump_dir is not None
        file_name = f"{module}.{qualname}.py".replace("<", "_").replace(">", "_")
        return os.path.join(self.dump_dir, file_name)
