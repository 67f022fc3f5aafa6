from nvidia_updater.cli import main

raise SystemExit(main())
