from luzzia.main import main

main()
