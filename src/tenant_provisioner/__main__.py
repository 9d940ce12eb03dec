import sys

from tenant_provisioner.cli import main


sys.exit(main())
