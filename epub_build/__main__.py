import sys

from epub_build.cli import main

raise SystemExit(main(sys.argv[1:]))
