"""Execution pipeline for the agent runtime.

This package contains the core execution components:

- **bridge**: Value bridge (host JSON values <-> script values)
- **signals**: Control signals (``skip``, ``before_all_response``) and their decoder
- **script**: Script stage runner (Python stage bodies, Jinja2 instruction templates)
- **invoke**: Recursive invocation bridge (``run()`` from scripts -> nested run on the loop)
- **executor**: Pipeline state machine (before-all -> per-input stages -> after-all)
- **call**: Call-stage transport protocol and the pydantic-ai implementation
- **runners**: Run mode front-ends (list runner, solo runner)
- **resolver**: Agent reference -> file resolution
"""
