from spa_deploy.cli import main

main()
