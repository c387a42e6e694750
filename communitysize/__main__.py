from communitysize.cli import main

main()
