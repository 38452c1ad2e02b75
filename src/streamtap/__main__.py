"""Run streamtap with python -m streamtap."""

from streamtap.cli import main

if __name__ == "__main__":
    main()
