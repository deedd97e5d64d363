"""Entry point for ``python -m feac``; see :mod:`feac.main`."""

from feac.main import main

if __name__ == "__main__":
    raise SystemExit(main())
