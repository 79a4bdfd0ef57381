from interview_coach.main import main

main()
