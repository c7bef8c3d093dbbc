"""
Apps package - applications built on the shared ``libs`` packages.

This package contains:
- order_console: order lifecycle coordination for operators and clients
  (status guards, edit locks, shipments, DMS synchronization)
"""
