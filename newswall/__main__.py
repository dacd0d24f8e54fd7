from newswall.app import main

raise SystemExit(main())
