"""Prompt templates for the Momentum coach, search and planning calls.

Every builder is a pure function returning ``(system_prompt, user_prompt)``.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from .schemas import OnboardingAnswers, Personality, QAPair, TaskContext

Prompt = Tuple[str, str]

DAY_NAMES = ["", "Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# Shared across every prompt that feeds back into a user's knowledge base.
NO_FABRICATION_RULE = (
    "CRITICAL: Only include information actually present in the search results. "
    "Do not hallucinate or add external knowledge. If results are insufficient, say so clearly."
)

INTENT_SYSTEM = """
Analyze the user's message and determine their intent.

Categories:
- researchRequest: User wants you to look up information, find data, or investigate something
- taskHelp: User needs advice, guidance, or explanation about how to do the task
- brainstorming: User wants to ideate, explore options, or think through approaches
- statusUpdate: User is sharing progress or asking "what's next"

Respond with ONLY the category name, nothing else.
""".strip()

CLARIFY_SYSTEM = """
Generate 2-3 clarifying questions to help focus a research request.

Questions should:
- Be specific and actionable
- Help narrow the scope
- Relate to the user's task context
- Avoid yes/no questions

Return ONLY valid JSON:
{
  "questions": ["Question 1?", "Question 2?", "Question 3?"]
}
""".strip()

TASK_HELP_SYSTEM = """
You are Momentum's helpful AI coach. A user is working on a task and needs guidance.

Provide specific, actionable advice that helps them make progress. Be:
- Encouraging and supportive
- Concrete and specific (not vague)
- Brief but helpful (2-4 sentences)

Your tone should be warm and energetic, like a coach who believes in them.
""".strip()

BROWSER_SEARCH_SYSTEM = """
You are Momentum's AI companion performing research for a user working on a specific task.

Use the browser_search tool to find relevant information, then synthesize it into a clear, actionable summary.

Output Format:
- Start with 1-2 sentence executive summary
- Key findings (3-5 bullet points with specific data/facts)
- Specific recommendations relevant to their task
- Sources (include URLs where possible)

Tone: Helpful, competent, friendly. Focus on actionable insights.

{rule}
""".format(rule=NO_FABRICATION_RULE).strip()

SYNTHESIS_SYSTEM = """
You are synthesizing web search results into a clear, actionable summary for a user working on a specific task.

Output Format:
- Start with 1-2 sentence executive summary
- Key findings (3-5 bullet points)
- Specific recommendations relevant to their task
- Sources (mention where the information came from)

Tone: Helpful and concise. Focus on actionable insights.

{rule}
""".format(rule=NO_FABRICATION_RULE).strip()

RESEARCH_REPORT_SYSTEM = """
Generate a research summary with tiered depth:
1. Summary: 1-2 sentence executive summary
2. Details: Key findings and analysis
3. Sources: Where the information came from

Return ONLY valid JSON:
{
  "summary": "Brief executive summary",
  "details": "Detailed findings and analysis",
  "sources": ["Source 1", "Source 2"]
}
""".strip()

TOOL_PROMPT_SYSTEM = """
Generate a detailed prompt that a user can copy-paste into {tool} to accomplish their goal.

The prompt should:
- Be specific and detailed
- Include all relevant context
- Be formatted properly for the tool
- Include any necessary instructions

Return ONLY valid JSON:
{{
  "summary": "Brief description of what the prompt does",
  "details": "Why this approach works",
  "tool_name": "{tool}",
  "prompt": "The full prompt to copy"
}}
""".strip()

TASK_TOOL_PROMPT_SYSTEM = """
Generate a detailed, copy-paste ready prompt for an external tool.

The prompt should:
- Be specific and detailed
- Include all relevant context
- Be formatted properly for the tool
- Account for the user's skill level
- Be ready to copy and paste directly into the tool

Return ONLY valid JSON:
{{
  "tool_name": "{tool}",
  "prompt": "The full prompt text",
  "context": "Brief explanation of why this prompt"
}}
""".strip()

TASK_ANALYSIS_SYSTEM = """
Analyze this task to determine:
1. What questions need to be asked to proceed
2. What research is needed
3. Whether AI can proceed without more information

Return ONLY valid JSON:
{
  "questions_needed": [
    {
      "question": "The question text",
      "options": [{"label": "Option 1"}, {"label": "Option 2"}],
      "allows_custom_input": true,
      "priority": "important"
    }
  ],
  "research_needed": ["Research topic 1", "Research topic 2"],
  "can_proceed": true
}
""".strip()

ONBOARDING_QUESTIONS_SYSTEM = """
You are Momentum's AI coach, designed to help users achieve their goals through personalized planning.
Generate 3-5 adaptive questions to better understand the user's vision and create a tailored plan.

For goal-based visions (e.g., "Start a consulting agency"), ask about:
- Experience level
- Main challenges or concerns
- Specific interests within the domain

IMPORTANT:
- Make questions specific to their exact vision domain
- For multiple choice, provide 3-4 specific options
- Set "allowsTextInput" to true if you want to also allow custom text input
- DO NOT include "Other (please specify)" as an option - use allowsTextInput instead
- DO NOT ask about time commitment or available days - we collect that separately

Return ONLY valid JSON in this exact format:
{
  "questions": [
    {
      "question": "What's your current experience level with [domain]?",
      "options": ["Complete beginner", "Some experience", "Intermediate", "Advanced"],
      "allowsTextInput": true
    }
  ]
}
""".strip()

PROJECT_PLAN_SYSTEM = """
You are Momentum's AI coach. Generate a HYPER-PERSONALIZED goal achievement plan.

CRITICAL: The plan MUST be specific to the user's EXACT vision. DO NOT use generic examples.

Framework:
1. North Star Vision - One SMART annual goal (refined from user's vision)
2. 12 Milestones - Sequential achievements (NOT month-based) that build toward the vision
3. First Week Tasks - Tasks with detailed checklists for the first week only

TASK REQUIREMENTS:
- Generate exactly {tasks_per_week} tasks for the first week (one per available day)
- Total time for all tasks must NOT exceed {weekly_minutes} minutes
- Each task MUST have a clear outcome goal and 3-5 checklist items with time estimates
- Distribute tasks across available days: {days}

Return ONLY valid JSON matching this EXACT structure:
{{
  "vision_refined": "SMART version of the user's vision",
  "milestones": [
    {{"sequence": 1, "title": "Title", "description": "What this achieves"}}
  ],
  "first_week_tasks": [
    {{
      "title": "Task name",
      "description": "What to do and why",
      "outcome_goal": "Clear definition of done",
      "checklist": [
        {{"text": "Step 1 description", "estimated_minutes": 10}}
      ],
      "scheduled_day": 2
    }}
  ]
}}

Generate all 12 milestones and {tasks_per_week} first-week tasks.
VERIFY: Ensure total time <= {weekly_minutes} minutes.
""".strip()

WEEKLY_TASKS_SYSTEM = """
Generate tasks for the next week of a milestone-based goal plan.

REQUIREMENTS:
- Generate exactly {tasks_per_week} tasks (one per available day)
- Total time must NOT exceed {budget} minutes
- Each task needs a clear outcome goal and 3-5 checklist items with time estimates
- Build on previous progress
- Account for user's skill levels

Return ONLY valid JSON:
{{
  "tasks": [
    {{
      "title": "Task name",
      "description": "What to do",
      "outcome_goal": "Definition of done",
      "checklist": [{{"text": "Step description", "estimated_minutes": 10}}],
      "scheduled_day": 2
    }}
  ]
}}
""".strip()

TASK_EVALUATION_SYSTEM = """
Evaluate tasks to determine the best approach for completion.

For each task, determine:
1. Can AI do this autonomously? (research, writing, analysis)
2. Can the user do this with their current skills?
3. What skills are required?
4. Best approach: userDirect, aiAssisted, toolHandoff, needsGuidance

Return ONLY valid JSON:
{
  "evaluations": [
    {
      "task_title": "Task name",
      "ai_can_do": false,
      "user_can_do": true,
      "skills_required": ["coding", "design"],
      "approach": "userDirect",
      "reasoning": "One sentence"
    }
  ]
}
""".strip()

BRIEFING_SYSTEM = """
You are Momentum's AI coworker generating a morning briefing. Your tone is {style}.

Generate TWO things:
1. "insight": A personalized 1-2 sentence observation about the user's progress, momentum, or a strategic tip for today. Reference their specific goal or milestone when possible.
2. "focus_area": A short phrase (3-8 words) recommending what to focus on today.

Return ONLY valid JSON:
{{
  "insight": "Your insight here",
  "focus_area": "Your focus recommendation"
}}
""".strip()

PERSONALITY_STYLES: Dict[str, str] = {
    "energetic": "energetic and enthusiastic",
    "calm": "calm and thoughtful",
    "direct": "direct and concise",
    "motivational": "inspiring and motivational",
}


def personality_style(personality: Personality) -> str:
    return PERSONALITY_STYLES.get(personality, PERSONALITY_STYLES["energetic"])


def day_names(days: Sequence[int]) -> str:
    return ", ".join(DAY_NAMES[day] for day in sorted(days) if 0 < day < len(DAY_NAMES))


def format_clarifications(clarifications: Sequence[QAPair], empty: str = "") -> str:
    if not clarifications:
        return empty
    return "\n".join(f"Q: {pair.question}\nA: {pair.answer}" for pair in clarifications)


def intent_prompt(message: str, task_context: str) -> Prompt:
    user = f'Task Context: {task_context}\n\nUser Message: "{message}"\n\nIntent:'
    return INTENT_SYSTEM, user


def clarification_prompt(query: str, task_context: str, task_title: str) -> Prompt:
    user = (
        f"Task: {task_title}\n"
        f"Context: {task_context}\n\n"
        f'Research Request: "{query}"\n\n'
        "Generate 2-3 clarifying questions to make this research more effective."
    )
    return CLARIFY_SYSTEM, user


def task_help_prompt(task_title: str, task_description: Optional[str], question: str) -> Prompt:
    details = task_description or task_title
    user = (
        f"Task: {task_title}\n"
        f"Details: {details}\n\n"
        f"User's question: {question}\n\n"
        "Provide helpful guidance to help them complete this task."
    )
    return TASK_HELP_SYSTEM, user


def browser_search_prompt(
    query: str,
    clarifications: Sequence[QAPair],
    task_context: str,
    task_title: str,
) -> Prompt:
    details = format_clarifications(clarifications, empty="No additional clarifications provided.")
    user = (
        f"Research Request: {query}\n\n"
        f"Clarifying Details:\n{details}\n\n"
        f'Task Context: Working on "{task_title}" - {task_context}\n\n'
        "Please search for relevant information and provide a comprehensive summary with actionable insights."
    )
    return BROWSER_SEARCH_SYSTEM, user


def synthesis_prompt(
    query: str,
    clarifications: Sequence[QAPair],
    raw_results: str,
    task_context: str,
) -> Prompt:
    user = (
        f"Original Query: {query}\n\n"
        f"Clarifying Q&A:\n{format_clarifications(clarifications)}\n\n"
        f"Task Context: {task_context}\n\n"
        f"Web Search Results:\n{raw_results}\n\n"
        "Synthesize these results into an actionable summary for the user."
    )
    return SYNTHESIS_SYSTEM, user


def research_report_prompt(query: str, context: str) -> Prompt:
    user = f"Research Query: {query}\nContext: {context}\n\nProvide a tiered research report."
    return RESEARCH_REPORT_SYSTEM, user


def idea_query(title: str) -> str:
    return f"Ideas for: {title}"


def tool_prompt(tool: str, context: str, goal: str) -> Prompt:
    user = f"Tool: {tool}\nGoal: {goal}\nContext: {context}\n\nGenerate a comprehensive prompt for this tool."
    return TOOL_PROMPT_SYSTEM.format(tool=tool), user


def task_tool_prompt(task: TaskContext, tool: str, skill_level: Optional[str], goal_context: str) -> Prompt:
    user = (
        f"TASK: {task.title}\n"
        f"Description: {task.description or 'No description'}\n"
        f"Outcome Goal: {task.outcome_goal}\n"
        f"Goal Context: {goal_context}\n"
        f"Tool: {tool}\n"
        f"User Skill Level: {skill_level or 'Unknown'}\n\n"
        f"Generate a comprehensive prompt for {tool} that will help complete this task."
    )
    return TASK_TOOL_PROMPT_SYSTEM.format(tool=tool), user


def task_analysis_prompt(task: TaskContext, goal_context: str) -> Prompt:
    user = (
        f"Task: {task.title}\n"
        f"Description: {task.description or 'No description'}\n"
        f"Goal Context: {goal_context}\n\n"
        "Analyze what's needed to complete this task."
    )
    return TASK_ANALYSIS_SYSTEM, user


def onboarding_questions_prompt(vision_text: str) -> Prompt:
    user = (
        f'User\'s vision: "{vision_text}"\n\n'
        "Generate 3-5 personalized questions to understand their background and create an effective action plan.\n"
        "Remember: DO NOT ask about time commitment or available days."
    )
    return ONBOARDING_QUESTIONS_SYSTEM, user


def project_plan_prompt(vision_text: str, answers: OnboardingAnswers) -> Prompt:
    weekly_minutes = answers.weekly_hours * 60
    days = day_names(answers.available_days)
    tasks_per_week = len(answers.available_days)
    system = PROJECT_PLAN_SYSTEM.format(tasks_per_week=tasks_per_week, weekly_minutes=weekly_minutes, days=days)
    user = (
        f'USER\'S SPECIFIC VISION: "{vision_text}"\n\n'
        "USER CONTEXT:\n"
        f"- Experience Level: {answers.experience_level or 'Not specified'}\n"
        f"- Weekly Time Available: {answers.weekly_hours} hours ({weekly_minutes} minutes)\n"
        f"- Available Days: {days}\n"
        f"- Main Concern: {answers.biggest_concern or 'Getting started'}\n"
        f"- Passions/Interests: {answers.passions or 'Not specified'}\n"
        f"- Additional Context: {answers.identity_meaning or 'Not specified'}\n\n"
        f"Create {tasks_per_week} tasks, one for each available day, within {weekly_minutes} minutes."
    )
    return system, user


def weekly_tasks_prompt(
    milestone_title: str,
    milestone_description: Optional[str],
    budget_minutes: int,
    available_days: Sequence[int],
    skills: Dict[str, str],
    previous_titles: Sequence[str],
    goal_context: str,
) -> Prompt:
    tasks_per_week = len(available_days)
    skills_summary = ", ".join(f"{name}: {level}" for name, level in skills.items())
    recent = ", ".join(list(previous_titles)[:5])
    system = WEEKLY_TASKS_SYSTEM.format(tasks_per_week=tasks_per_week, budget=budget_minutes)
    user = (
        f"MILESTONE: {milestone_title}\n"
        f"Milestone Description: {milestone_description or 'No description'}\n"
        f"Goal Context: {goal_context}\n\n"
        f"Weekly Time Budget: {budget_minutes} minutes\n"
        f"Available Days: {day_names(available_days)}\n"
        f"User Skills: {skills_summary or 'Unknown'}\n"
        f"Recent Tasks Completed: {recent or 'None'}\n\n"
        f"Generate {tasks_per_week} tasks that advance this milestone."
    )
    return system, user


def task_evaluation_prompt(tasks: Sequence[TaskContext], skills: Dict[str, str], goal_context: str) -> Prompt:
    blocks: List[str] = []
    for index, task in enumerate(tasks, start=1):
        blocks.append(
            f"Task {index}: {task.title}\n"
            f"Description: {task.description or 'No description'}\n"
            f"Outcome Goal: {task.outcome_goal}\n"
            f"Checklist: {', '.join(task.checklist)}"
        )
    skills_summary = ", ".join(f"{name}: {level}" for name, level in skills.items()) or "No skills data"
    user = (
        f"GOAL CONTEXT: {goal_context}\n"
        f"USER SKILLS: {skills_summary}\n\n"
        "TASKS TO EVALUATE:\n" + "\n\n".join(blocks) + "\n\n"
        "Evaluate each task and return an evaluation for each one in order."
    )
    return TASK_EVALUATION_SYSTEM, user


def briefing_prompt(
    goal_vision: str,
    milestone_name: str,
    milestone_progress: float,
    task_titles: Sequence[str],
    completed_yesterday: int,
    streak: int,
    personality: Personality,
) -> Prompt:
    if task_titles:
        task_list = "\n".join(f"{index}. {title}" for index, title in enumerate(task_titles, start=1))
    else:
        task_list = "No tasks scheduled yet"
    user = (
        f"Goal: {goal_vision}\n"
        f"Current Milestone: {milestone_name} ({int(milestone_progress)}% complete)\n"
        f"Today's Tasks:\n{task_list}\n"
        f"Yesterday: {completed_yesterday} tasks completed\n"
        f"Current Streak: {streak} days\n\n"
        "Generate the morning briefing."
    )
    return BRIEFING_SYSTEM.format(style=personality_style(personality)), user
