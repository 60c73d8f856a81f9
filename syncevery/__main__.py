# Copyright (c) 2025 Joe Walter
# GNU General Public License v3.0

from .cli import main

if __name__ == "__main__":
	main()
