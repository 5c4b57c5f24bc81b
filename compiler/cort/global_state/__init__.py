from .dump_ctrl import DumpControl

dump_ctrl = DumpControl()
