"""
Scanned files module: disposition of digitized legacy paper records.

Digital and physical dispositions are independent state machines, both gated
by the file's soft-delete marker.
"""
