
# Standard library
import sys

# Local imports
from .cli import main


# Run main function
sys.exit(main())
