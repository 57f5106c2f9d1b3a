"""
Pi digit subsystem.

Components:
- digits.py: exact decimal digits of pi (Machin series, fixed-point integers)
- search.py: chunked, boundary-safe substring search over those digits
- isolate.py: thread/process isolates running a search with a message stream
"""
