from finixrelay.app import main

main()
