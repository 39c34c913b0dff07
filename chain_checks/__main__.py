from chain_checks.main import main

raise SystemExit(main())
