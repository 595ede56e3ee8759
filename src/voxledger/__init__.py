"""
voxledger — offline voice commands for bookkeeping

Microphone → whisper.cpp → intent + entities, all on the local machine.

Entry points:
    voxledger.bootstrap.build_voice_stack   wire the pipeline from Settings
    voxledger.main.main                     command-line interface
"""

__version__ = "0.1.0"
