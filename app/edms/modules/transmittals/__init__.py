"""
Transmittals module: numbered packages of revisions issued to a recipient.

DRAFT -> ISSUED -> (ACKNOWLEDGED ->) RESPONDED -> CLOSED
"""
