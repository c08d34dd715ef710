from face_cropper.cli import main

raise SystemExit(main())
