"""Recky Print - local silent-print agent for the Recky platform.

Recky Print keeps a websocket connection open to the Recky server and
prints the documents it pushes, one at a time, on local printers. Thermal
receipt printers can optionally beep and cut the paper after each job.

Usage:
    reckyprint configure --server wss://your-server/ws --key AGENT_KEY
    reckyprint start
    reckyprint status
    reckyprint cut CAJA
"""

__version__ = "0.1.0"
