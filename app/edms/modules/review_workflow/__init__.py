"""
Review workflow module: sequential sign-off of a revision.

- Steps are approved strictly in step_order; ACKNOWLEDGE steps are advisory
- Approving the last ordinary step completes the workflow and approves the revision
- Rejection or cancellation skips the remaining steps and returns the revision to DRAFT
"""
