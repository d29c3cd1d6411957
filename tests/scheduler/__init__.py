"""
Job Scheduler Test Suite.

- Store and queue tests
- Execution lock tests (both backends, cross-instance contention)
- Log demultiplexing and engine client tests
- Dispatcher scenarios (run now, queue, drain, removal, failure)
- Service, recovery, CLI and API tests
"""
