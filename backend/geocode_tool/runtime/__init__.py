"""Runtime Layer — worker lifecycle, worker process runner and supervisor.

Invariants:
    - lifecycle.py has no dependency on the web stack; worker.py and
      supervisor.py are the only modules that start servers or processes
"""
