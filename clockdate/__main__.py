#!/usr/bin/env python
"""
Stub function and module used as a setuptools entry point.
"""
import sys
from clockdate import make_parser


# Entry point for setuptools-installed script and bin/clockdate dev wrapper.
def main():
    parser = make_parser()

    params = parser.parse_args()

    return_code = params.func(params)

    sys.exit(return_code)


# Run when called as `python -m clockdate`
if __name__ == "__main__":
    main()
