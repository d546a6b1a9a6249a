from blocksync.cli import main

main()
