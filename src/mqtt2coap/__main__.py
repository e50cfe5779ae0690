from mqtt2coap.cli import main

raise SystemExit(main())
