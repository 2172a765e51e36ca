"""
Sample organization shared by the test suite.

The scenario employee's reporting line is A -> S -> H -> E, and C heads
the terminal (HR) department:

    Executive   E  ceo@corp.test
    Operations  H  ops.head@corp.test      <- S supervisor@corp.test <- A employee@corp.test
    HR          C  hr.head@corp.test       <- hr.officer@corp.test
    Finance        finance.head@corp.test  <- accountant@corp.test
"""

from approval_engines.chain_builder import ChainRecipe, RecipeStep
from approval_kernel.domain.org import Department, OrgDirectory, OrgNode

EMPLOYEE = OrgNode("Ann Employee", "employee@corp.test", "Technician", "Operations", "supervisor@corp.test")
SUPERVISOR = OrgNode("Sam Super", "supervisor@corp.test", "Site Supervisor", "Operations", "ops.head@corp.test")
OPS_HEAD = OrgNode("Hana Head", "ops.head@corp.test", "Operations Director", "Operations", "ceo@corp.test")
EXECUTIVE = OrgNode("Eve Exec", "ceo@corp.test", "President", "Executive")
COMPLIANCE = OrgNode("Cleo Compliance", "hr.head@corp.test", "HR Manager", "HR", "ceo@corp.test")
HR_OFFICER = OrgNode("Omar Officer", "hr.officer@corp.test", "HR Officer", "HR", "hr.head@corp.test")
FINANCE_HEAD = OrgNode("Fay Finance", "finance.head@corp.test", "Finance Director", "Finance", "ceo@corp.test")
ACCOUNTANT = OrgNode("Abe Accountant", "accountant@corp.test", "Accountant", "Finance", "finance.head@corp.test")

TERMINAL_ROLE = "HR - Final Approval & Compliance"


def make_directory(**kwargs) -> OrgDirectory:
    return OrgDirectory(
        [
            Department("Executive", EXECUTIVE),
            Department("Operations", OPS_HEAD, (SUPERVISOR, EMPLOYEE)),
            Department("HR", COMPLIANCE, (HR_OFFICER,)),
            Department("Finance", FINANCE_HEAD, (ACCOUNTANT,)),
        ],
        terminal_department="HR",
        executive_department="Executive",
        **kwargs,
    )


LEAVE_RECIPE = ChainRecipe(
    category="leave",
    steps=(
        RecipeStep("supervisor", "Supervisor"),
        RecipeStep("department_head", "Departmental Head"),
        RecipeStep("executive", "Head of Business"),
        RecipeStep("terminal_authority", TERMINAL_ROLE),
    ),
)

INVOICE_RECIPE = ChainRecipe(
    category="invoice",
    steps=(
        RecipeStep("supervisor", "Supervisor"),
        RecipeStep("department_head", "Departmental Head"),
        RecipeStep("head_of:Finance", "Finance Review"),
        RecipeStep("executive", "Head of Business"),
    ),
)


def emails(chain) -> list[str]:
    return [step.approver.email for step in chain]
