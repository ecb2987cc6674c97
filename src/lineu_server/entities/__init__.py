from lineu_server.entities.jobs import Job, ResolvedFingerprint

__all__ = ["Job", "ResolvedFingerprint"]
