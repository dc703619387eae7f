from skycall.app import main

main()
