from docchat.pipeline import HybridSearcher, merge_query_results
from docchat.refinement import Node, RAGState, next_node
from docchat.retrieval import keyword_search, reciprocal_rank_fusion
from docchat.schema import Passage


if __name__ == "__main__":
    vector = [
        Passage(id="1", text="Termination requires 30 days notice.", title="Contract", page=8, score=0.82),
        Passage(id="2", text="Payment is due monthly.", title="Contract", page=3, score=0.55),
    ]
    keyword = keyword_search("termination notice", vector)
    fused = reciprocal_rank_fusion([vector, keyword])
    state = RAGState(question="q", user_id="u", document_ids=("d",), relevance_score=0.1)
    print(
        {
            "keyword_matches": len(keyword),
            "fused": [(p.title, p.page, round(p.score, 4)) for p in fused],
            "after_grade": next_node(Node.GRADE, state).value,
            "searcher": HybridSearcher.__name__,
            "merged": len(merge_query_results([]).passages),
        }
    )
