"""
Documents module: the revision lifecycle.

- A document owns its revisions; a revision owns its immutable versions
- At most one revision per document is active (DRAFT or IN_REVIEW)
- At most one revision per document is APPROVED; approving another supersedes it
- Versions are only added while the owning revision is DRAFT
"""
